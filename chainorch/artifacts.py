"""
Artifact registry - read interface over compiled resource definitions.

Compilation is not done here. The file registry reads the JSON files left by
the build under ``<build_path>/compiled/<Name>.json`` with keys ``abi`` and
``evm.bytecode.object`` (a flat ``bytecode`` key is accepted too).
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from chainorch.errors import ManifestError
from chainorch.schemas import Artifact


class ArtifactRegistry(ABC):

    @abstractmethod
    def get(self, name: str) -> Optional[Artifact]:
        """Artifact by name, or None if unknown."""
        pass

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def require(self, name: str) -> Artifact:
        artifact = self.get(name)
        if artifact is None:
            raise ManifestError(f"Unknown artifact: {name}")
        return artifact


class InMemoryArtifactRegistry(ArtifactRegistry):

    def __init__(self, artifacts: Optional[dict[str, Artifact]] = None):
        self._artifacts = dict(artifacts or {})

    def add(self, artifact: Artifact) -> None:
        self._artifacts[artifact.name] = artifact

    def get(self, name: str) -> Optional[Artifact]:
        return self._artifacts.get(name)


class FileArtifactRegistry(ArtifactRegistry):

    def __init__(self, build_path: Path | str):
        self.compiled_dir = Path(build_path) / "compiled"
        self._cache: dict[str, Artifact] = {}

    def get(self, name: str) -> Optional[Artifact]:
        if name in self._cache:
            return self._cache[name]
        path = self.compiled_dir / f"{name}.json"
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except ValueError as e:
            raise ManifestError(f"{path}: invalid artifact JSON: {e}") from e
        artifact = Artifact.from_dict(name, data)
        self._cache[name] = artifact
        return artifact
