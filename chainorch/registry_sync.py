"""
Registry reconciler - drives the name -> address registry to the deployed set.

Phase A (import): every contract is checked with areAddressesImported (read
fan-out, bounded). The missing bindings are imported by one importAddresses
step. If that step is QUEUED the reconciler halts: dependents must not
rebuild caches against bindings that do not exist yet.

Phase B (cache rebuild): contracts exposing rebuildCache report the names
they require. A stale contract whose requirements are all bound is rebuilt
through the registry's rebuildCaches in fixed-size chunks that fit the
per-call execution ceiling; every member of a chunk must read fresh
afterwards. A stale contract with an unbound requirement is skipped with a
warning.

Legacy: setResolverAndSyncCache / setResolver contracts are pointed at the
resolver (the read proxy when deployed) one by one.

Capabilities are resolved once per contract from its interface.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from chainorch.errors import ConfigurationError, ConsistencyError
from chainorch.executor import StepExecutor
from chainorch.schemas import Contract, ReadProbe, StepOutcome, StepRequest, WriteCall, equals, truthy
from chainorch.utils import bounded_gather, chunked, from_bytes32, is_zero_address, to_bytes32

logger = logging.getLogger(__name__)


IMPORT_GAS_LIMIT = 6_000_000
LEGACY_GAS_LIMIT = 500_000

# cost profile -> (rebuild chunk size, rebuildCaches gas ceiling)
REBUILD_LIMITS = {
    "standard": (20, 7_000_000),
    "constrained": (7, 8_999_999),
}


class Capability(str, Enum):
    """How a contract learns about registry bindings."""
    BATCH_REBUILD = "batch_rebuild"
    LEGACY_SYNC = "legacy_sync"
    LEGACY_RESOLVER_ONLY = "legacy_resolver_only"
    NONE = "none"


def capability_of(contract: Contract) -> Capability:
    if contract.has_function("rebuildCache"):
        return Capability.BATCH_REBUILD
    if contract.has_function("setResolverAndSyncCache"):
        return Capability.LEGACY_SYNC
    if contract.has_function("setResolver"):
        return Capability.LEGACY_RESOLVER_ONLY
    return Capability.NONE


@dataclass
class RegistryReport:
    """
    Attributes:
        imported: Names whose binding was imported (or queued) this run
        halted: The import was queued; nothing downstream may run
        rebuild_batches: Size of every rebuildCaches call, in order
        rebuilt: Contracts rebuilt through rebuildCaches
        skipped: Stale contracts skipped because a requirement is unbound
        legacy: Legacy contracts given a resolver step
        outcomes: Every step outcome produced
    """
    imported: list[str] = field(default_factory=list)
    halted: bool = False
    rebuild_batches: list[int] = field(default_factory=list)
    rebuilt: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    legacy: list[str] = field(default_factory=list)
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def queued(self) -> list[str]:
        return [o.key for o in self.outcomes if o.is_queued and o.key]


class RegistrySync:
    """Two-phase registry fixpoint over a set of deployed contracts."""

    def __init__(
        self,
        executor: StepExecutor,
        contracts: Mapping[str, Contract],
        registry_name: str = "AddressResolver",
        proxy_name: Optional[str] = "ReadProxyAddressResolver",
        cost_profile: str = "standard",
        chunk_size: Optional[int] = None,
    ):
        if cost_profile not in REBUILD_LIMITS:
            raise ConfigurationError(f"Unknown cost profile: {cost_profile}")
        if registry_name not in contracts:
            raise ConfigurationError(f"Registry {registry_name} is not deployed")
        self.executor = executor
        self.contracts = dict(contracts)
        self.registry = self.contracts[registry_name]
        proxy = self.contracts.get(proxy_name) if proxy_name else None
        self.resolver_address = proxy.address if proxy else self.registry.address
        default_size, self.rebuild_gas_limit = REBUILD_LIMITS[cost_profile]
        self.chunk_size = chunk_size or default_size
        self.capabilities = {name: capability_of(c) for name, c in self.contracts.items()}

    async def run(self) -> RegistryReport:
        report = RegistryReport()
        await self.import_missing(report)
        if report.halted:
            logger.warning(
                "Addresses have not been imported into the resolver; owner actions "
                "must be performed before re-running."
            )
            return report
        await self.rebuild_caches(report)
        await self.sync_legacy(report)
        logger.info("All caches are rebuilt.")
        return report

    # -- phase A --------------------------------------------------------------

    async def import_missing(self, report: RegistryReport) -> None:
        registry = self.registry
        entries = list(self.contracts.values())
        imported = await bounded_gather(
            (
                self.executor.read(
                    registry, "areAddressesImported", [[to_bytes32(c.name)], [c.address]]
                )
                for c in entries
            ),
            self.executor.concurrency,
        )
        missing = [c for c, ok in zip(entries, imported) if not ok]
        if not missing:
            logger.info("Addresses are correctly set up")
            return

        for c in missing:
            logger.info(f"{c.name} needs to be imported to the {registry.name}")
        names = [to_bytes32(c.name) for c in missing]
        addresses = [c.address for c in missing]

        outcome = await self.executor.ensure(StepRequest(
            contract=registry,
            read=ReadProbe("areAddressesImported", (names, addresses), truthy()),
            write=WriteCall("importAddresses", [names, addresses], gas_limit=IMPORT_GAS_LIMIT),
        ))
        report.outcomes.append(outcome)
        report.imported = [c.name for c in missing]

        if outcome.is_queued:
            report.halted = True
            return

        if outcome.is_submitted and not self.executor.dry_run:
            ok = await self.executor.read(registry, "areAddressesImported", [names, addresses])
            if not ok:
                raise ConsistencyError(registry.name, "imported bindings do not resolve after importAddresses")

    # -- phase B --------------------------------------------------------------

    async def rebuild_caches(self, report: RegistryReport) -> None:
        rebuildable = [
            c for name, c in self.contracts.items()
            if self.capabilities[name] == Capability.BATCH_REBUILD
        ]
        if not rebuildable:
            return
        concurrency = self.executor.concurrency

        required = await bounded_gather(
            (self.executor.read(c, "resolverAddressesRequired") for c in rebuildable),
            concurrency,
        )
        unique_names: list[str] = []
        for names in required:
            for name in names:
                if name not in unique_names:
                    unique_names.append(name)

        resolved = await bounded_gather(
            (self.executor.read(self.registry, "getAddress", [name]) for name in unique_names),
            concurrency,
        )
        bound = {name: not is_zero_address(address) for name, address in zip(unique_names, resolved)}
        if self.executor.dry_run:
            # Bindings queued or simulated in phase A count as bound
            for name in report.imported:
                bound[to_bytes32(name)] = True

        logger.debug("Imported resolver addresses:")
        for name, ok in bound.items():
            logger.debug(f"  > {from_bytes32(name)}: {ok}")

        cached = await bounded_gather(
            (self.executor.read(c, "isResolverCached") for c in rebuildable),
            concurrency,
        )

        to_rebuild: list[Contract] = []
        for contract, names, is_cached in zip(rebuildable, required, cached):
            if is_cached:
                continue
            unknown = next((n for n in names if not bound.get(n)), None)
            if unknown is not None:
                logger.warning(
                    f"Not invoking {contract.name}.rebuildCache() because {from_bytes32(unknown)} "
                    f"is unknown. This contract requires: {[from_bytes32(n) for n in names]}"
                )
                report.skipped.append(contract.name)
            else:
                to_rebuild.append(contract)

        for chunk in chunked(to_rebuild, self.chunk_size):
            outcome = await self.executor.ensure(StepRequest(
                contract=self.registry,
                write=WriteCall(
                    "rebuildCaches",
                    [[c.address for c in chunk]],
                    gas_limit=self.rebuild_gas_limit,
                    publicly_callable=True,
                ),
            ))
            report.outcomes.append(outcome)
            report.rebuild_batches.append(len(chunk))
            report.rebuilt.extend(c.name for c in chunk)
            if not self.executor.dry_run:
                await self._assert_fresh(chunk)

    async def _assert_fresh(self, chunk: list[Contract]) -> None:
        fresh = await bounded_gather(
            (self.executor.read(c, "isResolverCached") for c in chunk),
            self.executor.concurrency,
        )
        for contract, ok in zip(chunk, fresh):
            if not ok:
                raise ConsistencyError(contract.name, "cache still stale after rebuildCaches")

    # -- legacy ---------------------------------------------------------------

    async def sync_legacy(self, report: RegistryReport) -> None:
        resolver = self.resolver_address
        for name, contract in self.contracts.items():
            capability = self.capabilities[name]
            if capability == Capability.LEGACY_SYNC:
                request = StepRequest(
                    contract=contract,
                    read=ReadProbe("isResolverCached", (resolver,), truthy()),
                    write=WriteCall("setResolverAndSyncCache", resolver, gas_limit=LEGACY_GAS_LIMIT),
                )
            elif capability == Capability.LEGACY_RESOLVER_ONLY:
                request = StepRequest(
                    contract=contract,
                    read=ReadProbe("resolver", (), equals(resolver)),
                    write=WriteCall("setResolver", resolver, gas_limit=LEGACY_GAS_LIMIT),
                )
            else:
                continue
            report.outcomes.append(await self.executor.ensure(request))
            report.legacy.append(name)
