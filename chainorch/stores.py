"""
Stores - durable per-environment state.

Three documents are mutated during a run, each flushed synchronously after
every change:
- DeploymentRecord (deployment.json): targets and interface sources
- Resource config (config.json): name -> {"deploy": bool}
- Pending action ledger (owner-actions.json): key -> PendingAction

Storage backends:
- In-memory (for testing and dry runs)
- File-based (one JSON document per concern, full rewrite per mutation)
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

from chainorch.errors import ManifestError
from chainorch.schemas import DeploymentRecord, PendingAction
from chainorch.utils import read_json, write_json

logger = logging.getLogger(__name__)


def _load_document(path: Path) -> Any:
    try:
        return read_json(path)
    except ValueError as e:
        raise ManifestError(f"{path}: invalid JSON: {e}") from e


# =============================================================================
# DEPLOYMENT RECORD
# =============================================================================


class DeploymentStore(ABC):
    """Persists the DeploymentRecord of one environment."""

    @abstractmethod
    def load(self) -> DeploymentRecord:
        """Load the record; an absent record is empty."""
        pass

    @abstractmethod
    def save(self, record: DeploymentRecord) -> None:
        """Persist the full record."""
        pass


class InMemoryDeploymentStore(DeploymentStore):
    """In-memory DeploymentStore. Keeps a serialized copy so saves are snapshots."""

    def __init__(self, data: Optional[dict[str, Any]] = None):
        self._data = data or {"targets": {}, "sources": {}}
        self.saves = 0

    def load(self) -> DeploymentRecord:
        return DeploymentRecord.from_dict(self._data)

    def save(self, record: DeploymentRecord) -> None:
        self._data = record.to_dict()
        self.saves += 1


class FileDeploymentStore(DeploymentStore):
    """deployment.json; an absent file reads as an empty record and is written on first save."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> DeploymentRecord:
        data = _load_document(self.path)
        if data is None:
            return DeploymentRecord()
        return DeploymentRecord.from_dict(data)

    def save(self, record: DeploymentRecord) -> None:
        write_json(self.path, record.to_dict())


# =============================================================================
# RESOURCE CONFIG
# =============================================================================


class ResourceConfigStore(ABC):
    """Persists the resource-config document: name -> {"deploy": bool}."""

    @abstractmethod
    def load(self) -> dict[str, dict[str, Any]]:
        pass

    @abstractmethod
    def set_deploy(self, name: str, deploy: bool) -> None:
        """Set the deploy flag of one entry (creating the entry if needed)."""
        pass


class InMemoryResourceConfigStore(ResourceConfigStore):

    def __init__(self, data: Optional[dict[str, dict[str, Any]]] = None):
        self._data = {name: dict(entry) for name, entry in (data or {}).items()}

    def load(self) -> dict[str, dict[str, Any]]:
        return {name: dict(entry) for name, entry in self._data.items()}

    def set_deploy(self, name: str, deploy: bool) -> None:
        self._data.setdefault(name, {})["deploy"] = deploy


class FileResourceConfigStore(ResourceConfigStore):
    """config.json"""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> dict[str, dict[str, Any]]:
        data = _load_document(self.path) or {}
        if not isinstance(data, dict):
            raise ManifestError(f"{self.path}: expected an object of name -> {{deploy}}")
        return data

    def set_deploy(self, name: str, deploy: bool) -> None:
        data = self.load()
        data.setdefault(name, {})["deploy"] = deploy
        write_json(self.path, data)


# =============================================================================
# PENDING ACTION LEDGER
# =============================================================================


class PendingActionLedger(ABC):
    """
    Upsert-only ledger of writes awaiting a privileged executor.

    Entries are keyed by action identity: upserting the same key twice
    leaves exactly one entry.
    """

    @abstractmethod
    def upsert(self, action: PendingAction) -> None:
        """Insert or overwrite the entry for action.key and persist."""
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[PendingAction]:
        pass

    @abstractmethod
    def all(self) -> list[PendingAction]:
        """Every entry in insertion order."""
        pass

    def pending(self) -> list[PendingAction]:
        """Entries not yet marked complete."""
        return [action for action in self.all() if not action.complete]

    def __len__(self) -> int:
        return len(self.all())


class InMemoryPendingActionLedger(PendingActionLedger):

    def __init__(self):
        self._actions: dict[str, PendingAction] = {}
        self.flushes = 0

    def upsert(self, action: PendingAction) -> None:
        self._actions[action.key] = action
        self.flushes += 1

    def get(self, key: str) -> Optional[PendingAction]:
        return self._actions.get(key)

    def all(self) -> list[PendingAction]:
        return list(self._actions.values())

    def clear(self) -> None:
        """Clear all stored data (for testing)."""
        self._actions.clear()


class FilePendingActionLedger(PendingActionLedger):
    """
    owner-actions.json

    Format: {actionKey: {target, action, complete, data, link}}
    An absent file reads as empty and is written on the first upsert.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        data = _load_document(self.path)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ManifestError(f"{self.path}: expected an object keyed by action")
        return data

    def upsert(self, action: PendingAction) -> None:
        data = self._load()
        data[action.key] = action.to_dict()
        write_json(self.path, data)

    def get(self, key: str) -> Optional[PendingAction]:
        entry = self._load().get(key)
        return PendingAction.from_dict(key, entry) if entry is not None else None

    def all(self) -> list[PendingAction]:
        return [PendingAction.from_dict(key, entry) for key, entry in self._load().items()]
