"""Tests for the state service, stores and update channel."""

import asyncio
import json

import pytest
from pydantic import ValidationError

from rebellion.state import (
    EventBus,
    EventType,
    JsonRebellionStore,
    LocalChannel,
    MemoryRebellionStore,
    MergeError,
    MessageError,
    NotAuthorityError,
    PayloadMessage,
    StateService,
    UpdateMessage,
    get_event_bus,
    parse_message,
    reset_event_bus,
)


def _client(authority, bus, channel="local"):
    if channel == "local":
        channel = LocalChannel(authority)
    return StateService(
        MemoryRebellionStore(), is_authority=False, channel=channel, sender_id="player", bus=bus,
    )


class TestGet:
    """Test snapshot reads."""

    def test_empty_store_reads_defaults(self, service):
        """Nothing stored reads as the default organization."""
        state = service.get()
        assert state.week == 1
        assert state.rank == 1
        assert state.population == 11900
        assert state.treasury == 10
        assert state.danger == 20
        assert state.teams == []

    def test_partial_document_defaulted(self, bus):
        """Missing fields are filled from defaults."""
        service = StateService(MemoryRebellionStore({"supporters": 12}), bus=bus)
        state = service.get()
        assert state.supporters == 12
        assert state.notoriety == 0

    def test_snapshots_are_independent(self, service):
        """Mutating a snapshot never touches the store."""
        state = service.get()
        state.notoriety = 50
        assert service.get().notoriety == 0

    def test_invalid_stored_value_raises(self, bus):
        """A stored value of the wrong type surfaces as a validation error."""
        service = StateService(MemoryRebellionStore({"notoriety": "very"}), bus=bus)
        with pytest.raises(ValidationError):
            service.get()


class TestApply:
    """Test authority merges, clamps and notifications."""

    def test_apply_persists(self, service, memory_store):
        """Applied updates are saved to the store."""
        service.apply({"supporters": 7})
        assert memory_store.document["supporters"] == 7

    def test_empty_update_does_not_save(self, service, memory_store):
        """An empty partial is a no-op."""
        service.apply({})
        assert memory_store.save_count == 0

    def test_notoriety_clamped(self, service):
        """Notoriety stays within 0..100."""
        assert service.apply({"notoriety": 150}).notoriety == 100
        assert service.apply({"notoriety": -3}).notoriety == 0

    def test_resources_never_negative(self, service):
        """Supporters, population and treasury floor at zero."""
        state = service.apply({"supporters": -1, "population": -10, "treasury": -2.5})
        assert state.supporters == 0
        assert state.population == 0
        assert state.treasury == 0

    def test_week_at_least_one(self, service):
        """The week counter starts at 1."""
        assert service.apply({"week": 0}).week == 1

    def test_rank_never_decreases(self, service):
        """A lower rank in an update is ignored."""
        service.apply({"rank": 5})
        assert service.apply({"rank": 2}).rank == 5

    def test_rank_capped_by_max_rank(self, service):
        """Rank cannot climb past maxRank."""
        state = service.apply({"maxRank": 3, "rank": 7})
        assert state.rank == 3

    def test_team_updates_merge(self, service):
        """Sparse team updates merge into the stored teams."""
        service.apply({"teams": [{"type": "sneaks"}, {"type": "peddlers"}]})
        state = service.apply({"teams": {"1": {"hasActed": True}}})
        assert [t.type for t in state.teams] == ["sneaks", "peddlers"]
        assert state.teams[1].has_acted is True
        assert state.teams[0].has_acted is False

    def test_bad_slot_index_rejected(self, service, memory_store):
        """A sparse collection keyed by something other than an index is rejected unsaved."""
        service.apply({"teams": [{"type": "peddlers"}]})
        with pytest.raises(MergeError, match="Not a slot index: 'x'"):
            service.apply({"teams": {"x": {"bonus": 1}}, "notoriety": 9})
        state = service.get()
        assert state.teams[0].bonus == 0
        assert state.notoriety == 0
        assert memory_store.save_count == 1

    def test_state_changed_emitted(self, service, bus):
        """Every applied update emits STATE_CHANGED with its keys."""
        service.apply({"notoriety": 4, "danger": 25})
        events = bus.get_history(EventType.STATE_CHANGED)
        assert len(events) == 1
        assert events[0].data["keys"] == ["danger", "notoriety"]
        assert events[0].data["reason"] == "update"

    def test_client_cannot_apply(self, service, bus):
        """Only the authority writes the store."""
        client = _client(service, bus)
        with pytest.raises(NotAuthorityError):
            client.apply({"week": 2})


class TestReplaceAndReset:
    """Test whole-document replacement and reset."""

    def test_replace_defaults_underneath(self, service):
        """Replacing keeps only what the new document names."""
        service.apply({"supporters": 9, "notoriety": 30})
        state = service.replace({"supporters": 3})
        assert state.supporters == 3
        assert state.notoriety == 0

    def test_replace_keeps_rank(self, service):
        """An override cannot lower the rank."""
        service.apply({"rank": 4})
        assert service.replace({"week": 6}).rank == 4

    def test_reset_restores_defaults(self, service, bus):
        """reset ignores the rank floor and emits STATE_RESET."""
        service.apply({"rank": 6, "supporters": 40})
        state = service.reset()
        assert state.rank == 1
        assert service.get().supporters == 0
        assert len(bus.get_history(EventType.STATE_RESET)) == 1

    def test_client_cannot_reset(self, service, bus):
        """reset is authority only."""
        with pytest.raises(NotAuthorityError):
            _client(service, bus).reset()


class TestQueue:
    """Test the authority's FIFO update queue."""

    def test_updates_apply_in_arrival_order(self, service, bus):
        """Queued updates apply strictly in the order received."""
        async def scenario():
            service.start()
            await service.receive({"type": "update", "data": {"notoriety": 5}, "senderId": "a"})
            await service.receive({"type": "updateData", "payload": {"notoriety": 9}})
            await service.receive(json.dumps({"type": "update", "data": {"danger": 30}}))
            await service.join()
            await service.stop()

        asyncio.run(scenario())
        state = service.get()
        assert state.notoriety == 9
        assert state.danger == 30
        keys = [e.data["keys"] for e in bus.get_history(EventType.STATE_CHANGED)]
        assert keys == [["notoriety"], ["notoriety"], ["danger"]]

    def test_override_message_replaces(self, service):
        """overrideData swaps the whole document."""
        service.apply({"supporters": 12, "notoriety": 20})

        async def scenario():
            await service.receive({"type": "overrideData", "payload": {"supporters": 2}})
            await service.join()
            await service.stop()

        asyncio.run(scenario())
        state = service.get()
        assert state.supporters == 2
        assert state.notoriety == 0

    def test_authority_update_returns_after_apply(self, service):
        """update() on the authority returns once the update is applied."""
        async def scenario():
            applied = await service.update({"supporters": 3})
            seen = service.get().supporters
            await service.stop()
            return applied, seen

        assert asyncio.run(scenario()) == (True, 3)

    def test_failed_update_raises_to_submitter(self, service):
        """A queued update that fails validation raises in the caller."""
        async def scenario():
            try:
                await service.update({"notoriety": "loud"})
            finally:
                await service.stop()

        with pytest.raises(ValidationError):
            asyncio.run(scenario())
        assert service.get().notoriety == 0

    def test_rejected_update_does_not_stop_queue(self, service, bus):
        """A rejected update raises in its submitter and later updates still apply."""
        async def scenario():
            try:
                with pytest.raises(MergeError):
                    await service.update({"allies": {"first": {"slug": "jilia"}}})
                return await service.update({"supporters": 4})
            finally:
                await service.stop()

        assert asyncio.run(scenario()) is True
        assert service.get().supporters == 4
        assert service.get().allies == []
        dropped = bus.get_history(EventType.UPDATE_DROPPED)
        assert dropped[0].data["keys"] == ["allies"]
        assert "Not a slot index" in dropped[0].data["reason"]

    def test_malformed_message_ignored(self, service, memory_store):
        """Unparseable messages are logged and dropped."""
        async def scenario():
            await service.receive("{not json")
            await service.receive({"type": "shout", "data": {}})
            await service.receive([1, 2])

        asyncio.run(scenario())
        assert memory_store.save_count == 0
        assert not service.running

    def test_restart_on_new_loop(self, service):
        """The queue works again under a fresh event loop."""
        asyncio.run(service.update({"supporters": 1}))
        asyncio.run(service.update({"supporters": 2}))
        assert service.get().supporters == 2


class TestClientUpdates:
    """Test updates submitted by non-authority editors."""

    def test_client_update_reaches_authority(self, service, bus):
        """A client update is applied by the authority, not locally."""
        client = _client(service, bus)

        async def scenario():
            sent = await client.update({"supporters": 4})
            await service.join()
            await service.stop()
            return sent

        assert asyncio.run(scenario()) is True
        assert service.get().supporters == 4
        assert client.get().supporters == 0
        assert client.channel.sent[0]["senderId"] == "player"

    def test_no_channel_drops_update(self, service, bus):
        """Without a channel the update is dropped with a notification."""
        client = _client(service, bus, channel=None)
        assert asyncio.run(client.update({"supporters": 4})) is False
        dropped = bus.get_history(EventType.UPDATE_DROPPED)
        assert len(dropped) == 1
        assert dropped[0].data["keys"] == ["supporters"]

    def test_unreachable_authority_drops_update(self, bus):
        """A channel with no authority behind it drops the update."""
        client = _client(None, bus, channel=LocalChannel(None))
        assert asyncio.run(client.update({"week": 2})) is False
        assert bus.get_history(EventType.UPDATE_DROPPED)

    def test_client_cannot_receive(self, service, bus):
        """Clients never drain channel messages."""
        client = _client(service, bus)
        with pytest.raises(NotAuthorityError):
            asyncio.run(client.receive({"type": "update", "data": {}}))


class TestChannelMessages:
    """Test wire message parsing."""

    def test_update_message(self):
        """update messages carry data and the sender."""
        message = parse_message('{"type": "update", "data": {"week": 2}, "senderId": "p1"}')
        assert isinstance(message, UpdateMessage)
        assert message.sender_id == "p1"
        assert message.to_wire()["senderId"] == "p1"

    def test_payload_messages(self):
        """updateData and overrideData carry a payload."""
        message = parse_message({"type": "overrideData", "payload": {"week": 3}})
        assert isinstance(message, PayloadMessage)
        assert message.payload == {"week": 3}

    @pytest.mark.parametrize("raw", ["nope", "[]", '{"type": "other"}', '{"type": "update", "data": 5}'])
    def test_bad_messages(self, raw):
        """Malformed messages raise MessageError."""
        with pytest.raises(MessageError):
            parse_message(raw)


class TestJsonStore:
    """Test file persistence."""

    def test_roundtrip(self, tmp_path):
        """Saved documents load back unchanged."""
        store = JsonRebellionStore(tmp_path / "rebellion.json")
        store.save({"week": 3, "events": [{"name": "Низкий боевой дух"}]})
        assert store.load() == {"week": 3, "events": [{"name": "Низкий боевой дух"}]}

    def test_missing_file_loads_none(self, tmp_path):
        """No file means nothing stored."""
        assert JsonRebellionStore(tmp_path / "absent.json").load() is None

    def test_backup_written(self, tmp_path):
        """The previous document is kept as a backup."""
        store = JsonRebellionStore(tmp_path / "rebellion.json")
        store.save({"week": 1})
        store.save({"week": 2})
        assert json.loads(store.backup_path.read_text(encoding="utf-8")) == {"week": 1}

    def test_corrupt_file_reads_defaults(self, tmp_path, bus):
        """A corrupt file reads as nothing stored."""
        path = tmp_path / "rebellion.json"
        path.write_text("{broken", encoding="utf-8")
        service = StateService(JsonRebellionStore(path), bus=bus)
        assert service.get().week == 1

    def test_non_object_ignored(self, tmp_path):
        """Only a JSON object is a document."""
        path = tmp_path / "rebellion.json"
        path.write_text("[1, 2]", encoding="utf-8")
        assert JsonRebellionStore(path).load() is None

    def test_clear(self, tmp_path):
        """clear removes the file."""
        store = JsonRebellionStore(tmp_path / "rebellion.json")
        store.save({"week": 1})
        store.clear()
        assert not store.path.exists()


# -----------------------------------------------------------------------------
# Event bus
# -----------------------------------------------------------------------------

class TestEventBus:
    """Test the synchronous bus."""

    def test_failing_listener_isolated(self):
        """A listener that raises does not stop the others."""
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        bus.on(EventType.RANK_CHANGED, broken)
        bus.on(EventType.RANK_CHANGED, seen.append)
        event = bus.emit(EventType.RANK_CHANGED, week=3, rank=2)
        assert seen == [event]
        assert event.data == {"rank": 2}

    def test_off_and_duplicates(self):
        """Handlers register once and can be removed."""
        bus = EventBus()
        seen = []
        bus.on(EventType.WEEK_ADVANCED, seen.append)
        bus.on(EventType.WEEK_ADVANCED, seen.append)
        bus.emit(EventType.WEEK_ADVANCED)
        bus.off(EventType.WEEK_ADVANCED, seen.append)
        bus.emit(EventType.WEEK_ADVANCED)
        assert len(seen) == 1

    def test_history_limit(self):
        """History keeps the most recent events."""
        bus = EventBus(history_limit=3)
        for week in range(5):
            bus.emit(EventType.PHASE_CHANGED, week=week)
        assert [e.week for e in bus.get_history()] == [2, 3, 4]

    def test_reset_global_bus(self):
        """Resetting drops the global bus and its listeners."""
        first = get_event_bus()
        seen = []
        first.on(EventType.STATE_RESET, seen.append)
        reset_event_bus()
        first.emit(EventType.STATE_RESET)
        assert seen == []
        assert get_event_bus() is not first
