"""
Deployment record schemas.

Target is the recorded address and source of one deployed resource.
DeploymentRecord is the per-environment record of every target plus the
interface descriptor of each artifact used. It is the single owned value that
the Deployment Coordinator mutates; every other component reads it.

File format (deployment.json):

    {
        "targets": {"Name": {"name", "address", "source", "link", "timeDeployed", "txn", "network", "library"}},
        "sources": {"ArtifactName": {"abi": [...]}}
    }
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class Target:
    """
    A deployed resource.

    Attributes:
        name: Resource name
        address: Deployed address
        source: Artifact name the resource was deployed from
        link: Explorer link for the address (if an explorer is configured)
        time_deployed: When the deployment was recorded
        txn: Submission id of the constructor call
        network: Environment the target lives on
        library: Deployed as a linked library (never bound in the registry)
    """
    name: str
    address: str
    source: str
    link: Optional[str] = None
    time_deployed: Optional[datetime] = None
    txn: Optional[str] = None
    network: Optional[str] = None
    library: bool = False

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "name": self.name,
            "address": self.address,
            "source": self.source,
        }
        if self.link is not None:
            result["link"] = self.link
        if self.time_deployed is not None:
            result["timeDeployed"] = int(self.time_deployed.timestamp() * 1000)
        if self.txn is not None:
            result["txn"] = self.txn
        if self.network is not None:
            result["network"] = self.network
        if self.library:
            result["library"] = True
        return result

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "Target":
        deployed_at = data.get("timeDeployed")
        return cls(
            name=data.get("name", name),
            address=data.get("address", ""),
            source=data.get("source", name),
            link=data.get("link"),
            time_deployed=(
                datetime.fromtimestamp(deployed_at / 1000, tz=timezone.utc)
                if deployed_at is not None else None
            ),
            txn=data.get("txn"),
            network=data.get("network"),
            library=bool(data.get("library", False)),
        )


@dataclass
class DeploymentRecord:
    """Mutable record of deployed targets; grows monotonically within a run."""
    targets: dict[str, Target] = field(default_factory=dict)
    sources: dict[str, dict[str, Any]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.targets

    def address_of(self, name: str) -> Optional[str]:
        """Recorded address for name, or None if absent or empty."""
        target = self.targets.get(name)
        if target is None or not target.address:
            return None
        return target.address

    def interface_of(self, name: str) -> dict[str, Any]:
        """Interface descriptor for a recorded target (empty abi if unknown)."""
        target = self.targets.get(name)
        if target is None:
            return {"abi": []}
        return self.sources.get(target.source, {"abi": []})

    def record(self, target: Target, interface: dict[str, Any]) -> None:
        self.targets[target.name] = target
        self.sources[target.source] = interface

    def to_dict(self) -> dict[str, Any]:
        return {
            "targets": {name: t.to_dict() for name, t in self.targets.items()},
            "sources": dict(self.sources),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "DeploymentRecord":
        data = data or {}
        return cls(
            targets={
                name: Target.from_dict(name, entry)
                for name, entry in (data.get("targets") or {}).items()
            },
            sources=dict(data.get("sources") or {}),
        )
