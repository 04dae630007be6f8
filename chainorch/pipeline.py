"""Pipeline runner - one end-to-end reconciliation of an environment.

Phases, in order:

    plan -> preflight -> deploy -> configure -> registry -> snapshot

- plan: order resources.json by dependencies (no I/O)
- preflight: reject the plan before any I/O (reuse without address, bad
  references in constructor args or steps, ...)
- deploy: deploy or reuse every resource, strictly sequential
- configure: steps.json through ensure_all; batched steps chunk by chunk after it
- registry: registry import and cache rebuild; a queued import halts here
- snapshot: refresh the debt snapshot if any trigger holds

Every phase is idempotent, so running the pipeline again after a crash or a
queued owner action is the recovery path. A second run with no external
change performs zero writes.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from chainorch.artifacts import ArtifactRegistry, FileArtifactRegistry
from chainorch.backends.base import Backend, load_backend_factory
from chainorch.config import ChainorchConfig
from chainorch.coordinator import DeploymentCoordinator, contracts_from_record
from chainorch.errors import ConfigError, ConfigurationError
from chainorch.executor import StepExecutor
from chainorch.manifest import load_manifest
from chainorch.nonce import NonceSequencer
from chainorch.owner_actions import InteractiveConfirm, OwnerFallback, QueueForLater
from chainorch.planner import plan_deployment
from chainorch.registry_sync import RegistryReport, RegistrySync
from chainorch.snapshot import SnapshotReconciler, SnapshotReport
from chainorch.stores import (
    DeploymentStore,
    FileDeploymentStore,
    FilePendingActionLedger,
    FileResourceConfigStore,
    PendingActionLedger,
    ResourceConfigStore,
)

logger = logging.getLogger(__name__)

DEPLOYMENT_FILENAME = "deployment.json"
CONFIG_FILENAME = "config.json"
OWNER_ACTIONS_FILENAME = "owner-actions.json"


@dataclass
class RunOptions:
    """Per-invocation switches (CLI flags)."""
    dry_run: bool = False
    concurrency: Optional[int] = None
    manage_nonces: Optional[bool] = None
    fresh_deploy: bool = False
    force_redeploy: tuple = ()
    ignore_safety_checks: bool = False
    interactive: bool = False


@dataclass
class PipelineContext:
    """Everything a run needs; build_context() wires the file-backed defaults."""
    config: ChainorchConfig
    network: str
    env_dir: Path
    backend: Backend
    artifacts: ArtifactRegistry
    deployment_store: DeploymentStore
    config_store: ResourceConfigStore
    ledger: PendingActionLedger
    options: RunOptions = field(default_factory=RunOptions)
    fallback: Optional[OwnerFallback] = None

    @property
    def account(self) -> str:
        if not self.config.account:
            raise ConfigError("No account configured (set 'account' or CHAINORCH_ACCOUNT)")
        return self.config.account

    @property
    def concurrency(self) -> int:
        return self.options.concurrency or self.config.concurrency

    @property
    def manage_nonces(self) -> bool:
        if self.options.manage_nonces is not None:
            return self.options.manage_nonces
        return self.config.manage_nonces


@dataclass
class PipelineReport:
    """Result of one reconciliation run."""
    network: str
    dry_run: bool = False
    planned: list[str] = field(default_factory=list)
    newly_deployed: list[str] = field(default_factory=list)
    outcomes: dict[str, int] = field(default_factory=dict)
    pending: list[str] = field(default_factory=list)
    halted: bool = False
    registry: Optional[RegistryReport] = None
    snapshot: Optional[SnapshotReport] = None
    duration_ms: int = 0

    @property
    def writes(self) -> int:
        """Deployments plus submitted steps."""
        return len(self.newly_deployed) + self.outcomes.get("submitted", 0)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "network": self.network,
            "dry_run": self.dry_run,
            "planned": self.planned,
            "newly_deployed": self.newly_deployed,
            "outcomes": self.outcomes,
            "pending": self.pending,
            "halted": self.halted,
            "duration_ms": self.duration_ms,
        }
        if self.registry is not None:
            result["registry"] = {
                "imported": self.registry.imported,
                "rebuild_batches": self.registry.rebuild_batches,
                "skipped": self.registry.skipped,
            }
        if self.snapshot is not None:
            result["snapshot"] = {
                "triggers": sorted(t.value for t in self.snapshot.triggers),
                "refreshed": self.snapshot.refreshed,
            }
        return result


def build_context(
    config: ChainorchConfig,
    network: Optional[str] = None,
    options: Optional[RunOptions] = None,
) -> PipelineContext:
    """Wire file-backed stores and the configured backend for one environment."""
    network = network or config.network
    env_dir = config.environment_dir(network)
    try:
        factory = load_backend_factory(config.backend_factory)
    except (ValueError, ImportError, AttributeError, TypeError) as e:
        raise ConfigError(f"backend_factory: {e}") from e
    return PipelineContext(
        config=config,
        network=network,
        env_dir=env_dir,
        backend=factory(config),
        artifacts=FileArtifactRegistry(Path(config.build_path).expanduser()),
        deployment_store=FileDeploymentStore(env_dir / DEPLOYMENT_FILENAME),
        config_store=FileResourceConfigStore(env_dir / CONFIG_FILENAME),
        ledger=FilePendingActionLedger(env_dir / OWNER_ACTIONS_FILENAME),
        options=options or RunOptions(),
    )


def _build_executor(context: PipelineContext, nonce_sequencer: Optional[NonceSequencer]) -> StepExecutor:
    fallback = context.fallback
    if fallback is None:
        if context.options.interactive:
            fallback = InteractiveConfirm()
        else:
            fallback = QueueForLater(context.ledger, dry_run=context.options.dry_run)
    return StepExecutor(
        backend=context.backend,
        account=context.account,
        fallback=fallback,
        dry_run=context.options.dry_run,
        nonce_sequencer=nonce_sequencer,
        concurrency=context.concurrency,
        gas_price=context.config.gas_price,
        default_gas_limit=context.config.method_call_gas_limit,
        explorer_url=context.config.explorer_url,
    )


def _nonce_sequencer(context: PipelineContext) -> Optional[NonceSequencer]:
    if context.manage_nonces and not context.options.dry_run:
        return NonceSequencer(context.backend, context.account)
    return None


async def run_pipeline(context: PipelineContext, only: Optional[str] = None) -> PipelineReport:
    """
    Reconcile one environment.

    Args:
        context: Wired run context
        only: "registry" runs registry reconciliation over recorded targets only

    Returns:
        PipelineReport

    Raises:
        ChainorchError: Any fatal configuration, backend or consistency error
    """
    if only not in (None, "registry"):
        raise ConfigurationError(f"Unknown phase: {only}")

    start = time.monotonic()
    options = context.options
    config = context.config
    report = PipelineReport(network=context.network, dry_run=options.dry_run)
    if options.dry_run:
        logger.info("[DRY RUN] No transactions will be submitted and nothing will be persisted")

    nonce_sequencer = _nonce_sequencer(context)
    executor = _build_executor(context, nonce_sequencer)

    if only == "registry":
        contracts = contracts_from_record(context.deployment_store.load(), include_libraries=False)
        await _registry_phase(context, executor, contracts, report)
        return _finish(report, executor, start)

    logger.info("------ PLAN ------")
    manifest = load_manifest(context.env_dir, context.config_store)
    specs = manifest.resources
    if options.force_redeploy:
        unknown = sorted(set(options.force_redeploy) - {s.name for s in specs})
        if unknown:
            raise ConfigurationError(f"Cannot force redeploy unknown resources: {', '.join(unknown)}")
        specs = [
            replace(s, force_redeploy=True) if s.name in options.force_redeploy else s
            for s in specs
        ]

    coordinator = DeploymentCoordinator(
        backend=context.backend,
        artifacts=context.artifacts,
        deployment_store=context.deployment_store,
        config_store=context.config_store,
        account=context.account,
        network=context.network,
        params=manifest.params,
        dry_run=options.dry_run,
        nonce_sequencer=nonce_sequencer,
        gas_limit=config.contract_deployment_gas_limit,
        gas_price=config.gas_price,
        explorer_url=config.explorer_url,
        fresh_deploy=options.fresh_deploy,
        non_upgradeable=config.non_upgradeable,
        ignore_safety_checks=options.ignore_safety_checks,
    )
    planned = plan_deployment(specs, known=coordinator.record.targets.keys())
    report.planned = [s.name for s in planned]
    coordinator.preflight(planned, manifest.steps)

    logger.info("------ DEPLOY ------")
    await coordinator.deploy_all(planned)
    report.newly_deployed = list(coordinator.newly_deployed)

    simulated = coordinator.simulated
    if simulated:
        logger.info(f"[DRY RUN] Not probing {len(simulated)} simulated resources: {sorted(simulated)}")

    if manifest.steps:
        logger.info("------ CONFIGURE ------")
        contracts = {**contracts_from_record(coordinator.record), **coordinator.contracts}
        requests = [
            step.to_request(contracts, context.account, manifest.params)
            for step in manifest.steps
            if step.contract not in simulated
        ]
        outcomes = await executor.ensure_all([r for r in requests if r.batch_limit is None])
        for request in requests:
            if request.batch_limit is not None:
                outcomes.extend(await executor.ensure_chunked(request))
        for outcome in outcomes:
            if outcome.is_queued and outcome.key:
                report.pending.append(outcome.key)

    contracts = {
        name: c for name, c in coordinator.registry_contracts().items() if name not in simulated
    }
    if config.registry_name in contracts:
        await _registry_phase(context, executor, contracts, report)
        if report.halted:
            return _finish(report, executor, start)
    elif config.registry_name in simulated:
        logger.info(f"[DRY RUN] {config.registry_name} is simulated; skipping registry reconciliation")
    else:
        logger.warning(f"{config.registry_name} not deployed; skipping registry reconciliation")

    debt_cache = coordinator.contracts.get(config.snapshot_name)
    if (
        debt_cache is not None
        and config.snapshot_name not in simulated
        and debt_cache.has_function("cacheInfo")
    ):
        logger.info("------ CHECKING DEBT CACHE ------")
        report.snapshot = await SnapshotReconciler(
            executor,
            debt_cache,
            max_deviation=config.max_snapshot_deviation,
            cost_profile=config.cost_profile,
        ).run()

    return _finish(report, executor, start)


async def _registry_phase(
    context: PipelineContext,
    executor: StepExecutor,
    contracts: dict,
    report: PipelineReport,
) -> None:
    logger.info("------ CONFIGURE ADDRESS RESOLVER ------")
    config = context.config
    sync = RegistrySync(
        executor,
        contracts,
        registry_name=config.registry_name,
        proxy_name=config.registry_proxy_name,
        cost_profile=config.cost_profile,
    )
    registry_report = await sync.run()
    report.registry = registry_report
    report.halted = registry_report.halted
    report.pending.extend(k for k in registry_report.queued if k not in report.pending)


def _finish(report: PipelineReport, executor: StepExecutor, start: float) -> PipelineReport:
    report.outcomes = dict(executor.stats)
    report.duration_ms = int((time.monotonic() - start) * 1000)
    if report.halted:
        logger.warning("------ DEPLOY PARTIALLY COMPLETED ------")
    else:
        logger.info("------ DEPLOY COMPLETE ------")
    return report
