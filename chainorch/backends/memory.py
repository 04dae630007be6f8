"""
In-memory backend - a simulated chain for the local environment and tests.

Contracts are Python models. Each model declares its view functions,
owner-only writes and publicly callable writes by their on-chain names;
dispatch goes to the snake_case method of the same name
(areAddressesImported -> are_addresses_imported).

Usage:
    backend = InMemoryBackend()
    backend.register("AddressResolver", AddressResolverModel.from_constructor)
    registry = AddressResolverModel(backend, owner=OWNER)
    address = backend.install(registry)
"""

import asyncio
import hashlib
import json
import logging
import re
from typing import Any, Callable, Optional

from chainorch.backends.base import Backend
from chainorch.errors import PermanentError
from chainorch.schemas import Artifact
from chainorch.utils import ZERO_ADDRESS, from_bytes32, is_bytes32, is_zero_address, same_address, to_bytes32

logger = logging.getLogger(__name__)


ModelFactory = Callable[["InMemoryBackend", str, list], "ContractModel"]


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _freeze(value: Any) -> Any:
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, str) and value.startswith("0x"):
        return value.lower()
    return value


def function_abi(*names: str, views: tuple = ()) -> list[dict[str, Any]]:
    """Minimal interface descriptor listing the given function names."""
    abi = [{"type": "function", "name": n, "stateMutability": "view"} for n in views]
    abi += [{"type": "function", "name": n, "stateMutability": "nonpayable"} for n in names]
    return abi


class ContractModel:
    """Base model: ownable contract with table-driven dispatch."""

    VIEWS: tuple = ("owner",)
    OWNER_WRITES: tuple = ()
    PUBLIC_WRITES: tuple = ()

    def __init__(self, chain: "InMemoryBackend", owner: str):
        self.chain = chain
        self.owner_address = owner
        self.address: Optional[str] = None

    @classmethod
    def from_constructor(cls, chain: "InMemoryBackend", deployer: str, args: list) -> "ContractModel":
        """Build from constructor args; first arg is the owner when given."""
        return cls(chain, owner=args[0] if args else deployer)

    @classmethod
    def interface(cls) -> list[dict[str, Any]]:
        return function_abi(*cls.OWNER_WRITES, *cls.PUBLIC_WRITES, views=cls.VIEWS)

    def owner(self) -> str:
        return self.owner_address

    def read(self, function: str, args: list) -> Any:
        if function not in self.VIEWS:
            raise PermanentError(f"{type(self).__name__} has no view function {function}")
        return getattr(self, _snake(function))(*args)

    def write(self, function: str, args: list, sender: str) -> None:
        if function in self.OWNER_WRITES:
            if not same_address(sender, self.owner_address):
                raise PermanentError(
                    f"{function}: Only the contract owner may perform this action"
                )
        elif function not in self.PUBLIC_WRITES:
            raise PermanentError(f"{type(self).__name__} has no write function {function}")
        getattr(self, _snake(function))(*args)


class StorageModel(ContractModel):
    """
    Generic getter/setter contract.

    setFoo(value) is read back by foo(); setFoo(key, value) by foo(key).
    Setters are owner-only unless named in public.
    """

    def __init__(self, chain: "InMemoryBackend", owner: str, public: tuple = ()):
        super().__init__(chain, owner)
        self.public = set(public)
        self.values: dict[tuple, Any] = {}

    def read(self, function: str, args: list) -> Any:
        if function == "owner":
            return self.owner_address
        return self.values.get((function, _freeze(list(args))))

    def write(self, function: str, args: list, sender: str) -> None:
        if function not in self.public and not same_address(sender, self.owner_address):
            raise PermanentError(f"{function}: Only the contract owner may perform this action")
        if not function.startswith("set") or len(function) < 4 or not args:
            raise PermanentError(f"StorageModel cannot apply {function}")
        getter = function[3].lower() + function[4:]
        *keys, value = args
        self.values[(getter, _freeze(keys))] = value


class AddressResolverModel(ContractModel):
    """Name -> address registry with batched cache rebuild."""

    VIEWS = ("owner", "areAddressesImported", "getAddress")
    OWNER_WRITES = ("importAddresses",)
    PUBLIC_WRITES = ("rebuildCaches",)

    def __init__(self, chain: "InMemoryBackend", owner: str, max_rebuild_batch: Optional[int] = None):
        super().__init__(chain, owner)
        self.repository: dict[str, str] = {}
        self.max_rebuild_batch = max_rebuild_batch

    def are_addresses_imported(self, names: list, addresses: list) -> bool:
        if len(names) != len(addresses):
            raise PermanentError("Input lengths must match")
        return all(
            same_address(self.repository.get(name.lower()), address)
            for name, address in zip(names, addresses)
        )

    def get_address(self, name: str) -> str:
        return self.repository.get(name.lower(), ZERO_ADDRESS)

    def import_addresses(self, names: list, addresses: list) -> None:
        if len(names) != len(addresses):
            raise PermanentError("Input lengths must match")
        for name, address in zip(names, addresses):
            self.repository[name.lower()] = address

    def rebuild_caches(self, destinations: list) -> None:
        if self.max_rebuild_batch is not None and len(destinations) > self.max_rebuild_batch:
            raise PermanentError(
                f"rebuildCaches: {len(destinations)} destinations exceed the execution ceiling"
            )
        for destination in destinations:
            self.chain.model_at(destination).rebuild_cache()


class ReadProxyModel(ContractModel):
    """Read-only proxy in front of another contract (typically the registry)."""

    VIEWS = ("owner", "target")
    OWNER_WRITES = ("setTarget",)

    def __init__(self, chain: "InMemoryBackend", owner: str, target: Optional[str] = None):
        super().__init__(chain, owner)
        self.target_address = target

    @classmethod
    def from_constructor(cls, chain, deployer, args):
        return cls(chain, owner=args[0] if args else deployer, target=args[1] if len(args) > 1 else None)

    def target(self) -> str:
        return self.target_address or ZERO_ADDRESS

    def set_target(self, target: str) -> None:
        self.target_address = target

    def read(self, function: str, args: list) -> Any:
        if function in self.VIEWS:
            return super().read(function, args)
        if is_zero_address(self.target_address):
            raise PermanentError(f"ReadProxy has no target for {function}")
        return self.chain.model_at(self.target_address).read(function, args)


class ResolverMixinModel(ContractModel):
    """Contract caching the registry bindings it requires (rebuildCache capability)."""

    VIEWS = ("owner", "resolver", "resolverAddressesRequired", "isResolverCached")
    PUBLIC_WRITES = ("rebuildCache",)

    def __init__(
        self,
        chain: "InMemoryBackend",
        owner: str,
        resolver: str,
        required: tuple = (),
    ):
        super().__init__(chain, owner)
        self.resolver_address = resolver
        self.required = [n if is_bytes32(n) else to_bytes32(n) for n in required]
        self.cache: dict[str, str] = {}

    @classmethod
    def from_constructor(cls, chain, deployer, args, required: tuple = ()):
        owner = args[0] if args else deployer
        resolver = args[1] if len(args) > 1 else ZERO_ADDRESS
        return cls(chain, owner=owner, resolver=resolver, required=required)

    def resolver(self) -> str:
        return self.resolver_address

    def resolver_addresses_required(self) -> list[str]:
        return list(self.required)

    def is_resolver_cached(self) -> bool:
        registry = self.chain.registry_at(self.resolver_address)
        for name in self.required:
            destination = registry.get_address(name)
            if is_zero_address(destination) or not same_address(self.cache.get(name), destination):
                return False
        return True

    def rebuild_cache(self) -> None:
        registry = self.chain.registry_at(self.resolver_address)
        for name in self.required:
            destination = registry.get_address(name)
            if is_zero_address(destination):
                raise PermanentError(f"Resolver missing target: {from_bytes32(name)}")
            self.cache[name] = destination


class LegacySyncModel(ContractModel):
    """Older contract exposing setResolverAndSyncCache / isResolverCached(resolver)."""

    VIEWS = ("owner", "resolver", "isResolverCached")
    OWNER_WRITES = ("setResolverAndSyncCache",)

    def __init__(self, chain: "InMemoryBackend", owner: str, resolver: Optional[str] = None):
        super().__init__(chain, owner)
        self.resolver_address = resolver or ZERO_ADDRESS
        self.synced = False

    def resolver(self) -> str:
        return self.resolver_address

    def is_resolver_cached(self, resolver: str) -> bool:
        return self.synced and same_address(self.resolver_address, resolver)

    def set_resolver_and_sync_cache(self, resolver: str) -> None:
        self.resolver_address = resolver
        self.synced = True


class LegacyResolverModel(ContractModel):
    """Oldest contract shape: plain setResolver, no cache."""

    VIEWS = ("owner", "resolver")
    OWNER_WRITES = ("setResolver",)

    def __init__(self, chain: "InMemoryBackend", owner: str, resolver: Optional[str] = None):
        super().__init__(chain, owner)
        self.resolver_address = resolver or ZERO_ADDRESS

    def resolver(self) -> str:
        return self.resolver_address

    def set_resolver(self, resolver: str) -> None:
        self.resolver_address = resolver


class DebtCacheModel(ContractModel):
    """Cached system debt with explicit snapshotting."""

    VIEWS = ("owner", "cacheInfo", "currentDebt")
    PUBLIC_WRITES = ("takeDebtSnapshot",)

    def __init__(
        self,
        chain: "InMemoryBackend",
        owner: str,
        debt: int = 0,
        cached_debt: int = 0,
        any_rate_invalid: bool = False,
        is_invalid: bool = False,
        is_stale: bool = False,
    ):
        super().__init__(chain, owner)
        self.debt = debt
        self.any_rate_invalid = any_rate_invalid
        self.cached_debt = cached_debt
        self.is_invalid = is_invalid
        self.is_stale = is_stale
        self.snapshots = 0

    def cache_info(self) -> dict[str, Any]:
        return {"debt": self.cached_debt, "isInvalid": self.is_invalid, "isStale": self.is_stale}

    def current_debt(self) -> dict[str, Any]:
        return {"debt": self.debt, "anyRateIsInvalid": self.any_rate_invalid}

    def take_debt_snapshot(self) -> None:
        self.cached_debt = self.debt
        self.is_invalid = self.any_rate_invalid
        self.is_stale = False
        self.snapshots += 1


class InMemoryBackend(Backend):
    """
    Simulated chain.

    Attributes:
        submissions: Every accepted write, in order
        deployments: Every accepted deployment, in order
        failures: function name (or artifact name for deploys) -> exception to raise
        max_in_flight: Highest number of concurrent reads observed
    """

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.models: dict[str, ContractModel] = {}
        self.factories: dict[str, ModelFactory] = {}
        self.submissions: list[dict[str, Any]] = []
        self.deployments: list[dict[str, Any]] = []
        self.failures: dict[str, BaseException] = {}
        self.reads = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._nonces: dict[str, int] = {}
        self._address_counter = 0x1000
        self._tx_counter = 0

    # -- setup --------------------------------------------------------------

    def register(self, artifact_name: str, factory: ModelFactory) -> None:
        """Model factory used when artifact_name is deployed."""
        self.factories[artifact_name] = factory

    def install(self, model: ContractModel, address: Optional[str] = None) -> str:
        """Place a model on chain without a deployment; returns its address."""
        if address is None:
            address = self._next_address()
        model.address = address
        self.models[address.lower()] = model
        return address

    def model_at(self, address: str) -> ContractModel:
        model = self.models.get((address or "").lower())
        if model is None:
            raise PermanentError(f"No contract at {address}")
        return model

    def registry_at(self, address: str) -> ContractModel:
        """Model at address, following a read proxy to its target."""
        model = self.model_at(address)
        if isinstance(model, ReadProxyModel):
            return self.model_at(model.target())
        return model

    @property
    def write_count(self) -> int:
        return len(self.submissions) + len(self.deployments)

    # -- Backend ------------------------------------------------------------

    async def call(self, address: str, function: str, args: list[Any]) -> Any:
        self._raise_if_failing(function)
        self.reads += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            return self.model_at(address).read(function, list(args))
        finally:
            self.in_flight -= 1

    async def submit(
        self,
        address: str,
        function: str,
        args: list[Any],
        account: str,
        nonce: Optional[int] = None,
        gas_limit: Optional[int] = None,
        gas_price: Optional[int] = None,
    ) -> dict[str, Any]:
        self._raise_if_failing(function)
        if self.latency:
            await asyncio.sleep(self.latency)
        model = self.model_at(address)
        nonce = self._accept_nonce(account, nonce)
        model.write(function, list(args), account)
        tx_id = self._next_tx_id()
        self.submissions.append({
            "id": tx_id,
            "address": address,
            "function": function,
            "args": list(args),
            "account": account,
            "nonce": nonce,
            "gas_limit": gas_limit,
        })
        logger.debug(f"Accepted {function} on {address} (nonce {nonce})")
        return {"id": tx_id}

    async def deploy(
        self,
        artifact: Artifact,
        args: list[Any],
        account: str,
        nonce: Optional[int] = None,
        gas_limit: Optional[int] = None,
        gas_price: Optional[int] = None,
    ) -> dict[str, Any]:
        self._raise_if_failing(artifact.name)
        if self.latency:
            await asyncio.sleep(self.latency)
        nonce = self._accept_nonce(account, nonce)
        factory = self.factories.get(artifact.name)
        if factory is None:
            model: ContractModel = StorageModel(self, owner=args[0] if args and isinstance(args[0], str) else account)
        else:
            model = factory(self, account, list(args))
        address = self.install(model)
        tx_id = self._next_tx_id()
        self.deployments.append({
            "id": tx_id,
            "artifact": artifact.name,
            "address": address,
            "args": list(args),
            "account": account,
            "nonce": nonce,
        })
        return {"id": tx_id, "address": address}

    async def get_current_nonce(self, account: str) -> int:
        return self._nonces.get(account.lower(), 0)

    def encode_call(self, address: str, function: str, args: list[Any]) -> str:
        payload = json.dumps({"function": function, "args": list(args)}, sort_keys=True)
        return "0x" + payload.encode("utf-8").hex()

    # -- internals ----------------------------------------------------------

    def _raise_if_failing(self, key: str) -> None:
        failure = self.failures.get(key)
        if failure is not None:
            raise failure

    def _accept_nonce(self, account: str, nonce: Optional[int]) -> int:
        expected = self._nonces.get(account.lower(), 0)
        if nonce is None:
            nonce = expected
        elif nonce < expected:
            raise PermanentError(f"nonce too low: got {nonce}, expected at least {expected}")
        self._nonces[account.lower()] = max(expected, nonce + 1)
        return nonce

    def _next_address(self) -> str:
        self._address_counter += 1
        return "0x" + format(self._address_counter, "040x")

    def _next_tx_id(self) -> str:
        self._tx_counter += 1
        return "0x" + hashlib.sha256(f"tx-{self._tx_counter}".encode()).hexdigest()


def create_backend(config=None) -> InMemoryBackend:
    """Backend factory for the local environment.

    Registers the registry, read proxy and debt cache models so a local
    deployment gets working reconciliation targets.
    """
    backend = InMemoryBackend()
    registry_name = getattr(config, "registry_name", "AddressResolver")
    proxy_name = getattr(config, "registry_proxy_name", "ReadProxyAddressResolver")
    snapshot_name = getattr(config, "snapshot_name", "DebtCache")
    backend.register(registry_name, AddressResolverModel.from_constructor)
    backend.register(proxy_name, ReadProxyModel.from_constructor)
    backend.register("ReadProxy", ReadProxyModel.from_constructor)
    backend.register(snapshot_name, DebtCacheModel.from_constructor)
    return backend
