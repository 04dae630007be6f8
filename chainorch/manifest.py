"""
Manifest loading - the per-environment input documents.

<deployments_root>/<network>/
    config.json     name -> {"deploy": bool}
    params.json     [{"name": ..., "value": ...}] constructor/step overrides
    resources.json  [{"name", "source", "args", "deps", "force", "library"}]
    steps.json      optional declarative configuration steps

Values in resources.json and steps.json may contain references:

    @deployed.Name      address of a deployed (or reused) resource
    @account            the deployer account
    @param.NAME[.path]  value from params.json
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from chainorch.errors import ManifestError
from chainorch.schemas import (
    Contract,
    ReadProbe,
    ResourceSpec,
    StepRequest,
    WriteCall,
    differs_from,
    equals,
    truthy,
)
from chainorch.schemas.step import Predicate
from chainorch.stores import ResourceConfigStore
from chainorch.utils import read_json

logger = logging.getLogger(__name__)

REF_PATTERN = re.compile(r"^@(deployed|param|account)(?:\.([A-Za-z_][A-Za-z0-9_.]*))?$")


def resolve_refs(
    value: Any,
    addresses: Mapping[str, str],
    account: Optional[str],
    params: Mapping[str, Any],
) -> Any:
    """
    Resolve @deployed/@account/@param references anywhere inside value.

    Raises:
        ManifestError: Reference to an unknown resource or parameter
    """
    if isinstance(value, str):
        match = REF_PATTERN.match(value)
        if not match:
            return value
        kind, path = match.group(1), match.group(2)
        if kind == "account":
            if path is not None:
                raise ManifestError(f"@account takes no path: {value}")
            if not account:
                raise ManifestError("@account used but no account is configured")
            return account
        if path is None:
            raise ManifestError(f"Reference needs a name: {value}")
        if kind == "deployed":
            if path not in addresses:
                raise ManifestError(f"@deployed reference to unknown resource: {path}")
            return addresses[path]
        parts = path.split(".")
        if parts[0] not in params:
            raise ManifestError(f"@param reference to unknown parameter: {parts[0]}")
        result = params[parts[0]]
        for part in parts[1:]:
            if isinstance(result, dict) and part in result:
                result = result[part]
            else:
                raise ManifestError(f"@param reference path not found: {value} (missing '{part}')")
        return result
    elif isinstance(value, dict):
        return {k: resolve_refs(v, addresses, account, params) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [resolve_refs(v, addresses, account, params) for v in value]
    else:
        return value


def _read_list(path: Path, required: bool) -> list:
    try:
        data = read_json(path)
    except ValueError as e:
        raise ManifestError(f"{path}: invalid JSON: {e}") from e
    if data is None:
        if required:
            raise ManifestError(f"Missing input document: {path}")
        return []
    if not isinstance(data, list):
        raise ManifestError(f"{path}: expected a list")
    return data


def load_params(env_dir: Path) -> dict[str, Any]:
    """params.json as a name -> value mapping."""
    params: dict[str, Any] = {}
    for entry in _read_list(env_dir / "params.json", required=False):
        if not isinstance(entry, dict) or "name" not in entry:
            raise ManifestError(f"params.json: entry without name: {entry!r}")
        params[entry["name"]] = entry.get("value")
    return params


def load_resources(env_dir: Path, resource_config: Mapping[str, Mapping[str, Any]]) -> list[ResourceSpec]:
    """resources.json merged with the deploy flags of config.json, in declaration order."""
    specs = []
    for entry in _read_list(env_dir / "resources.json", required=True):
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ManifestError(f"resources.json: entry without name: {entry!r}")
        flags = resource_config.get(entry["name"])
        deploy = None if flags is None else bool(flags.get("deploy", False))
        try:
            specs.append(ResourceSpec.from_dict(entry, deploy=deploy))
        except ValueError as e:
            raise ManifestError(f"resources.json: {e}") from e
    return specs


def build_expectation(expected: Any, resolve) -> Predicate:
    """
    Turn a steps.json ``expected`` value into a predicate.

    {"truthy": true}  -> value is truthy
    {"not": x}        -> value differs from x
    anything else     -> value equals it (hex strings case-insensitively)
    """
    if isinstance(expected, dict) and set(expected) == {"truthy"}:
        return truthy()
    if isinstance(expected, dict) and set(expected) == {"not"}:
        return differs_from(resolve(expected["not"]))
    return equals(resolve(expected))


@dataclass(frozen=True)
class ConfigStep:
    """
    A declarative "ensure" step from steps.json.

    When ``read`` is given without ``expected``, the read must return the
    write's single argument (or the whole argument list for multi-arg writes).
    With ``batch_limit`` the write's list arguments are sent in chunks of at
    most that many entries, each chunk read and written on its own.
    """
    contract: str
    write: str
    write_args: tuple = ()
    read: Optional[str] = None
    read_args: tuple = ()
    expected: Any = None
    has_expected: bool = False
    public: bool = False
    gas_limit: Optional[int] = None
    batch_limit: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConfigStep":
        for key in ("contract", "write"):
            if not data.get(key):
                raise ManifestError(f"steps.json: entry missing '{key}': {data!r}")
        batch_limit = data.get("batch_limit")
        if batch_limit is not None and (not isinstance(batch_limit, int) or batch_limit < 1):
            raise ManifestError(f"steps.json: batch_limit must be a positive integer: {data!r}")
        return cls(
            contract=data["contract"],
            write=data["write"],
            write_args=tuple(data.get("write_args", [])),
            read=data.get("read"),
            read_args=tuple(data.get("read_args", [])),
            expected=data.get("expected"),
            has_expected="expected" in data,
            public=bool(data.get("public", False)),
            gas_limit=data.get("gas_limit"),
            batch_limit=batch_limit,
        )

    def to_request(
        self,
        contracts: Mapping[str, Contract],
        account: Optional[str],
        params: Mapping[str, Any],
    ) -> StepRequest:
        if self.contract not in contracts:
            raise ManifestError(f"Step targets unknown resource: {self.contract}")
        addresses = {name: c.address for name, c in contracts.items()}

        def resolve(value):
            return resolve_refs(value, addresses, account, params)

        write_args = resolve(list(self.write_args))
        read = None
        if self.read:
            if self.has_expected:
                predicate = build_expectation(self.expected, resolve)
            else:
                predicate = equals(write_args[0] if len(write_args) == 1 else write_args)
            read = ReadProbe(
                function=self.read,
                args=tuple(resolve(list(self.read_args))),
                expected=predicate,
            )
        return StepRequest(
            contract=contracts[self.contract],
            write=WriteCall(
                function=self.write,
                args=write_args,
                gas_limit=self.gas_limit,
                publicly_callable=self.public,
            ),
            read=read,
            batch_limit=self.batch_limit,
        )


def load_steps(env_dir: Path) -> list[ConfigStep]:
    return [ConfigStep.from_dict(entry) for entry in _read_list(env_dir / "steps.json", required=False)]


@dataclass
class EnvironmentManifest:
    """Everything read from one environment directory."""
    directory: Path
    resources: list[ResourceSpec] = field(default_factory=list)
    params: dict[str, Any] = field(default_factory=dict)
    steps: list[ConfigStep] = field(default_factory=list)


def load_manifest(env_dir: Path, config_store: ResourceConfigStore) -> EnvironmentManifest:
    """
    Load the declarative inputs of an environment.

    Raises:
        ManifestError: Missing resources.json or malformed documents
    """
    env_dir = Path(env_dir)
    if not env_dir.is_dir():
        raise ManifestError(f"Environment directory not found: {env_dir}")
    manifest = EnvironmentManifest(
        directory=env_dir,
        resources=load_resources(env_dir, config_store.load()),
        params=load_params(env_dir),
        steps=load_steps(env_dir),
    )
    logger.debug(
        f"Loaded {len(manifest.resources)} resources, {len(manifest.params)} params, "
        f"{len(manifest.steps)} steps from {env_dir}"
    )
    return manifest
