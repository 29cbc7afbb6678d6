"""
State service: the single authority over the rebellion document.

Exactly one service instance per table is the authority (the GM). It owns
the store, applies merges and persists. Every other instance is a client:
its updates travel over an UpdateChannel and take effect only when the
authority drains them.

Concurrency model:
- The authority serializes all mutations through one FIFO asyncio.Queue.
  Merges are read-modify-write over the whole snapshot, and the queue
  guarantees no two of them overlap.
- Client update() returns once the message is transmitted, not applied.
  Observe STATE_CHANGED (or poll get()) to confirm.
- With no authority reachable the update is dropped with a warning.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable

from ..errors import RebellionError
from .channel import MessageError, UpdateChannel, UpdateMessage, parse_message
from .event_bus import EventBus, EventType, get_event_bus
from .merge import merge_document, normalize_document
from .schema import OfficerRole, OrganizationState, default_document
from .store import RebellionStore

logger = logging.getLogger(__name__)


class NotAuthorityError(RebellionError):
    """Attempted an authority-only operation on a client."""

    def __init__(self, attempted: str):
        self.attempted = attempted
        super().__init__(f"Only the authority may {attempted}.")


@dataclass
class _Job:
    data: dict[str, Any]
    replace: bool = False
    sender_id: str = ""
    future: asyncio.Future | None = None


class StateService:
    """
    get / update / reset over a RebellionStore.

    Args:
        store: Persistence backend (authority only reads/writes it)
        is_authority: Whether this instance applies merges
        channel: Transport to the authority (clients only)
        sender_id: Identifies this editor in update messages
        bus: Event bus for change notifications
        is_known_team_type: Team-type predicate used by the team merge
        canonical_event_name: Maps legacy event names to current ones
    """

    def __init__(
        self,
        store: RebellionStore,
        *,
        is_authority: bool = True,
        channel: UpdateChannel | None = None,
        sender_id: str = "gm",
        bus: EventBus | None = None,
        is_known_team_type: Callable[[str], bool] | None = None,
        canonical_event_name: Callable[[str], str] | None = None,
    ):
        if is_known_team_type is None:
            from ..systems.teams import is_known_type
            is_known_team_type = is_known_type
        if canonical_event_name is None:
            from ..systems.events import canonical_event_name as _canonical
            canonical_event_name = _canonical

        self.store = store
        self.is_authority = is_authority
        self.channel = channel
        self.sender_id = sender_id
        self.bus = bus or get_event_bus()
        self._is_known_team_type = is_known_team_type
        self._canonical_event_name = canonical_event_name
        self._roles = [r.value for r in OfficerRole]

        self._queue: asyncio.Queue[_Job] | None = None
        self._worker: asyncio.Task | None = None

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _normalize(self, document: dict | None) -> dict:
        return normalize_document(
            document,
            default_document(),
            self._roles,
            self._canonical_event_name,
        )

    def get(self) -> OrganizationState:
        """
        Fully defaulted, array-normalized snapshot.

        Each call returns a fresh copy; mutate it freely and send changes
        back through update()/apply().

        Raises:
            pydantic.ValidationError: The stored document has invalid values
        """
        return OrganizationState.model_validate(self._normalize(self.store.load()))

    # -------------------------------------------------------------------------
    # Authority writes
    # -------------------------------------------------------------------------

    def _require_authority(self, attempted: str) -> None:
        if not self.is_authority:
            raise NotAuthorityError(attempted)

    @staticmethod
    def _clamp(state: OrganizationState, before: OrganizationState) -> OrganizationState:
        state.notoriety = max(0, min(100, state.notoriety))
        state.supporters = max(0, state.supporters)
        state.population = max(0, state.population)
        state.treasury = max(0, state.treasury)
        state.danger = max(0, state.danger)
        state.week = max(1, state.week)
        state.actions_used_this_week = max(0, state.actions_used_this_week)
        state.rank = min(max(state.rank, before.rank), max(state.max_rank, before.rank))
        return state

    def _persist(self, state: OrganizationState, reason: str, **data) -> OrganizationState:
        self.store.save(state.to_document())
        self.bus.emit(EventType.STATE_CHANGED, week=state.week, reason=reason, **data)
        return state

    def apply(self, partial: dict[str, Any]) -> OrganizationState:
        """
        Merge a partial document and persist it (authority only).

        Synchronous: the merge, clamp and save complete before returning.

        Raises:
            NotAuthorityError: Called on a client
            MergeError: A collection update has an unusable shape or index
        """
        self._require_authority("apply updates")
        if not partial:
            return self.get()

        before = self.get()
        merged = merge_document(before.to_document(), partial, self._is_known_team_type)
        state = OrganizationState.model_validate(self._normalize(merged))
        state = self._clamp(state, before)
        logger.debug("Applied update keys=%s", sorted(partial))
        return self._persist(state, "update", keys=sorted(partial))

    def replace(self, document: dict[str, Any]) -> OrganizationState:
        """Replace the whole document, defaults underneath (authority only)."""
        self._require_authority("replace state")
        before = self.get()
        state = OrganizationState.model_validate(self._normalize(document))
        state = self._clamp(state, before)
        return self._persist(state, "override")

    def reset(self) -> OrganizationState:
        """Unconditionally restore defaults (authority only)."""
        self._require_authority("reset state")
        state = OrganizationState()
        self.store.save(state.to_document())
        logger.info("Rebellion state reset to defaults")
        self.bus.emit(EventType.STATE_RESET, week=state.week)
        return state

    # -------------------------------------------------------------------------
    # FIFO queue
    # -------------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start draining the update queue. Needs a running event loop."""
        self._require_authority("drain the update queue")
        if self.running:
            return
        # A queue is bound to the loop that first used it
        if self._queue is not None and not self._queue.empty():
            logger.warning(f"Discarding {self._queue.qsize()} updates queued on a stopped loop")
        self._queue = asyncio.Queue()
        self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def stop(self) -> None:
        """Finish queued updates, then stop the worker."""
        if self._queue is not None and self.running:
            await self._queue.join()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None

    async def join(self) -> None:
        """Wait until every queued update has been applied."""
        if self._queue is not None:
            await self._queue.join()

    def _enqueue(self, job: _Job) -> None:
        if not self.running:
            self.start()
        assert self._queue is not None
        self._queue.put_nowait(job)

    async def _drain(self) -> None:
        assert self._queue is not None
        while True:
            job = await self._queue.get()
            try:
                state = self.replace(job.data) if job.replace else self.apply(job.data)
            except RebellionError as e:
                # Rejected input: nothing was saved, the queue carries on
                self._drop(job.data, str(e))
                if job.future is not None and not job.future.done():
                    job.future.set_exception(e)
            except Exception as e:
                logger.exception("Queued update from %r failed", job.sender_id or "local")
                if job.future is not None and not job.future.done():
                    job.future.set_exception(e)
            else:
                if job.future is not None and not job.future.done():
                    job.future.set_result(state)
            finally:
                self._queue.task_done()

    # -------------------------------------------------------------------------
    # Public async API
    # -------------------------------------------------------------------------

    def _drop(self, partial: dict[str, Any], reason: str) -> bool:
        logger.warning(f"Update not applied: {reason}")
        self.bus.emit(EventType.UPDATE_DROPPED, reason=reason, keys=sorted(partial))
        return False

    async def update(self, partial: dict[str, Any]) -> bool:
        """
        Submit a partial update.

        On the authority the update joins the FIFO queue and this returns
        after it is applied. On a client it is transmitted to the authority
        and this returns once sent.

        Returns:
            True if applied (authority) or transmitted (client); False if
            dropped because no authority is reachable.
        """
        if self.is_authority:
            future = asyncio.get_running_loop().create_future()
            self._enqueue(_Job(data=partial, sender_id=self.sender_id, future=future))
            await future
            return True

        if self.channel is None:
            return self._drop(partial, "no channel to an authority")

        message = UpdateMessage(data=partial, sender_id=self.sender_id)
        if not await self.channel.send(message):
            return self._drop(partial, "no active authority")
        logger.debug("Transmitted update keys=%s", sorted(partial))
        return True

    async def receive(self, raw: str | bytes | dict) -> None:
        """
        Accept a channel message on the authority.

        Messages are queued in arrival order; malformed ones are logged and
        ignored.
        """
        self._require_authority("receive updates")
        try:
            message = parse_message(raw)
        except MessageError as e:
            logger.warning(f"Ignoring channel message: {e}")
            return

        if isinstance(message, UpdateMessage):
            self._enqueue(_Job(data=message.data, sender_id=message.sender_id))
        else:
            self._enqueue(_Job(data=message.payload, replace=message.type == "overrideData"))
