"""
Resource schemas - what gets deployed and the handle used to talk to it.

ResourceSpec is the declarative description of one deployable resource.
Artifact is the compiled definition supplied by the artifact registry.
Contract is the runtime handle (name + address + interface) handed to every
phase after deployment.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Optional


# @deployed.Name references another resource's address
DEPLOYED_REF_PATTERN = re.compile(r"^@deployed\.([A-Za-z0-9_]+)$")


def deployed_refs(value: Any) -> set[str]:
    """Collect every @deployed.X name referenced anywhere inside value."""
    found: set[str] = set()
    if isinstance(value, str):
        match = DEPLOYED_REF_PATTERN.match(value)
        if match:
            found.add(match.group(1))
    elif isinstance(value, (list, tuple)):
        for item in value:
            found |= deployed_refs(item)
    elif isinstance(value, dict):
        for item in value.values():
            found |= deployed_refs(item)
    return found


@dataclass(frozen=True)
class ResourceSpec:
    """
    Declarative description of a single resource.

    Attributes:
        name: Unique resource name (e.g. "ProxyERC20")
        artifact_name: Compiled artifact used to deploy it
        constructor_args: Ordered constructor inputs; may hold @deployed.*,
            @account and @param.* references
        dependencies: Names that must be processed first. Includes every
            @deployed.* name found in constructor_args.
        force_redeploy: Deploy even when an address is already recorded
        deploy: Resource-config flag; None when the resource has no config entry
        library: Linked library rather than a stand-alone resource
    """
    name: str
    artifact_name: str
    constructor_args: tuple = ()
    dependencies: frozenset = field(default_factory=frozenset)
    force_redeploy: bool = False
    deploy: Optional[bool] = None
    library: bool = False

    def __post_init__(self):
        if not self.name:
            raise ValueError("ResourceSpec requires a name")
        if not self.artifact_name:
            raise ValueError(f"ResourceSpec {self.name}: artifact_name is required")
        implicit = deployed_refs(list(self.constructor_args))
        if self.name in implicit or self.name in self.dependencies:
            raise ValueError(f"ResourceSpec {self.name}: cannot depend on itself")
        # Frozen: go through object.__setattr__ to merge implicit deps
        object.__setattr__(self, "dependencies", frozenset(self.dependencies) | implicit)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the resources.json entry format."""
        result: dict[str, Any] = {
            "name": self.name,
            "source": self.artifact_name,
        }
        if self.constructor_args:
            result["args"] = list(self.constructor_args)
        if self.dependencies:
            result["deps"] = sorted(self.dependencies)
        if self.force_redeploy:
            result["force"] = True
        if self.library:
            result["library"] = True
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any], deploy: Optional[bool] = None) -> "ResourceSpec":
        """Deserialize a resources.json entry; deploy comes from config.json."""
        return cls(
            name=data["name"],
            artifact_name=data.get("source", data["name"]),
            constructor_args=tuple(data.get("args", [])),
            dependencies=frozenset(data.get("deps", [])),
            force_redeploy=bool(data.get("force", False)),
            deploy=deploy,
            library=bool(data.get("library", False)),
        )


@dataclass(frozen=True)
class Artifact:
    """Compiled resource definition: interface descriptor and bytecode."""
    name: str
    abi: tuple = ()
    bytecode: str = ""

    @property
    def interface(self) -> dict[str, Any]:
        """Interface descriptor stored under sources in the deployment record."""
        return {"abi": list(self.abi)}

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "Artifact":
        return cls(
            name=name,
            abi=tuple(data.get("abi", [])),
            bytecode=data.get("bytecode", data.get("evm", {}).get("bytecode", {}).get("object", "")),
        )


@dataclass(frozen=True)
class Contract:
    """
    Runtime handle for a deployed resource.

    Capability probing (does this resource expose rebuildCache?) is answered
    from the interface descriptor, never by calling the backend.
    """
    name: str
    address: str
    abi: tuple = ()
    source: Optional[str] = None

    def function_names(self) -> set[str]:
        return {
            entry["name"] for entry in self.abi
            if entry.get("type", "function") == "function" and "name" in entry
        }

    def has_function(self, name: str) -> bool:
        return name in self.function_names()

    def __str__(self) -> str:
        return f"{self.name}({self.address})"
