"""
Rebellion document storage abstraction.

Separates persistence from the merge and rule logic for testability. Stores
deal in raw JSON documents; validation happens in the state service.
"""

import json
import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class RebellionStore(Protocol):
    """
    Abstract storage interface for the rebellion document.

    Implementations:
    - JsonRebellionStore: File-based persistence (production)
    - MemoryRebellionStore: In-memory storage (testing)
    """

    def load(self) -> dict[str, Any] | None:
        """Load the stored document. Returns None if nothing is stored."""
        ...

    def save(self, document: dict[str, Any]) -> None:
        """Persist the whole document."""
        ...

    def clear(self) -> None:
        """Remove the stored document."""
        ...


class JsonRebellionStore:
    """
    File-based storage using a single JSON document.

    Features:
    - Automatic backup of the previous document on save
    - Write-then-rename so a crash never leaves a half-written file
    """

    def __init__(self, path: Path | str = "rebellion.json"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def backup_path(self) -> Path:
        return self.path.with_suffix(self.path.suffix + ".bak")

    def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt rebellion document at {self.path}: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"Rebellion document at {self.path} is not an object")
            return None
        return data

    def save(self, document: dict[str, Any]) -> None:
        # Backup previous save
        if self.path.exists():
            self.backup_path.write_text(self.path.read_text(encoding="utf-8"), encoding="utf-8")

        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


class MemoryRebellionStore:
    """
    In-memory storage for testing.

    No file I/O - the document lives in memory. Saved documents are
    round-tripped through JSON so tests see exactly what a file would hold.
    """

    def __init__(self, document: dict[str, Any] | None = None):
        self.document: dict[str, Any] | None = None
        self.save_count = 0
        if document is not None:
            self.document = json.loads(json.dumps(document))

    def load(self) -> dict[str, Any] | None:
        if self.document is None:
            return None
        return json.loads(json.dumps(self.document))

    def save(self, document: dict[str, Any]) -> None:
        self.document = json.loads(json.dumps(document))
        self.save_count += 1

    def clear(self) -> None:
        self.document = None
