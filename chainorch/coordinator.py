"""
Deployment coordinator - deploy-vs-reuse for every planned resource.

A resource is deployed when it is force-redeployed, when config.json says
``deploy: true``, or when it has no config entry and no recorded address.
Every other resource is reused and must already have a recorded address.

Each successful deployment is recorded and flushed immediately: the target
and its interface go to deployment.json, then the config entry is flipped to
``deploy: false`` so the next run reuses it. A crash therefore loses at most
the one in-flight deployment. Processing is strictly sequential because a
constructor may reference the address of a resource deployed just before it.

The coordinator is the only writer of the DeploymentRecord.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from chainorch.artifacts import ArtifactRegistry
from chainorch.backends.base import Backend, guarded
from chainorch.errors import ConfigurationError, ManifestError
from chainorch.manifest import ConfigStep, resolve_refs
from chainorch.nonce import NonceSequencer
from chainorch.schemas import Contract, DeploymentRecord, ResourceSpec, Target
from chainorch.stores import DeploymentStore, ResourceConfigStore
from chainorch.utils import ZERO_ADDRESS

logger = logging.getLogger(__name__)

LOCAL_NETWORK = "local"


def wants_deploy(spec: ResourceSpec, record: DeploymentRecord) -> bool:
    """Deploy when forced, flagged deploy: true, or unconfigured and unrecorded."""
    if spec.force_redeploy or spec.deploy is True:
        return True
    if spec.deploy is None:
        return record.address_of(spec.name) is None
    return False


def contracts_from_record(record: DeploymentRecord, include_libraries: bool = True) -> dict[str, Contract]:
    """Runtime handles for every recorded target with an address."""
    return {
        name: Contract(
            name=name,
            address=target.address,
            abi=tuple(record.interface_of(name).get("abi", [])),
            source=target.source,
        )
        for name, target in record.targets.items()
        if target.address and (include_libraries or not target.library)
    }


class DeploymentCoordinator:
    """
    Deploys or reuses resources and owns the DeploymentRecord.

    Attributes:
        record: The environment's DeploymentRecord (single owned value)
        contracts: name -> Contract for every resource deployed or reused so far
        newly_deployed: Names deployed during this run, in order
        simulated: Names only deployed in a dry run; their addresses are
            synthetic and cannot be read from the backend
    """

    def __init__(
        self,
        backend: Backend,
        artifacts: ArtifactRegistry,
        deployment_store: DeploymentStore,
        config_store: ResourceConfigStore,
        account: str,
        network: str,
        params: Optional[Mapping[str, Any]] = None,
        dry_run: bool = False,
        nonce_sequencer: Optional[NonceSequencer] = None,
        gas_limit: Optional[int] = None,
        gas_price: Optional[int] = None,
        explorer_url: Optional[str] = None,
        fresh_deploy: bool = False,
        non_upgradeable: Sequence[str] = (),
        ignore_safety_checks: bool = False,
    ):
        self.backend = backend
        self.artifacts = artifacts
        self.deployment_store = deployment_store
        self.config_store = config_store
        self.account = account
        self.network = network
        self.params = dict(params or {})
        self.dry_run = dry_run
        self.nonce_sequencer = nonce_sequencer
        self.gas_limit = gas_limit
        self.gas_price = gas_price
        self.explorer_url = explorer_url.rstrip("/") if explorer_url else None
        self.fresh_deploy = fresh_deploy
        self.non_upgradeable = tuple(non_upgradeable)
        self.ignore_safety_checks = ignore_safety_checks

        self.record: DeploymentRecord = deployment_store.load()
        self.contracts: dict[str, Contract] = {}
        self.newly_deployed: list[str] = []
        self.simulated: set[str] = set()
        self.libraries: set[str] = set()
        self._dry_run_counter = 0

    def should_deploy(self, spec: ResourceSpec) -> bool:
        return wants_deploy(spec, self.record)

    def preflight(self, specs: Sequence[ResourceSpec], steps: Sequence[ConfigStep] = ()) -> None:
        """
        Validate the whole plan before any backend I/O.

        Constructor arguments of every resource to deploy and every
        configuration step are resolved, with placeholder addresses standing
        in for resources not deployed yet.

        Raises:
            ConfigurationError: Listing every problem found
        """
        if self.fresh_deploy and not self.record.is_empty() and self.network != LOCAL_NETWORK:
            raise ConfigurationError(
                f"Cannot run a fresh deploy on {self.network}: the deployment record "
                f"already holds {len(self.record.targets)} targets"
            )

        addresses = {spec.name: ZERO_ADDRESS for spec in specs}
        addresses.update(self.addresses())

        problems = []
        for spec in specs:
            if not self.should_deploy(spec):
                if self.record.address_of(spec.name) is None:
                    problems.append(f"{spec.name}: missing address for resource marked reuse")
                continue
            if not self.artifacts.has(spec.artifact_name):
                problems.append(f"{spec.name}: unknown artifact {spec.artifact_name}")
            try:
                resolve_refs(list(spec.constructor_args), addresses, self.account, self.params)
            except ManifestError as e:
                problems.append(f"{spec.name}: {e}")
            if (
                not self.ignore_safety_checks
                and self.record.address_of(spec.name) is not None
                and spec.name.startswith(self.non_upgradeable)
            ):
                problems.append(
                    f"{spec.name}: is not upgradeable and already deployed; "
                    f"redeploying it requires --ignore-safety-checks"
                )

        contracts = {name: Contract(name, address) for name, address in addresses.items()}
        for step in steps:
            try:
                step.to_request(contracts, self.account, self.params)
            except (ManifestError, ValueError) as e:
                problems.append(f"step {step.contract}.{step.write}: {e}")

        if problems:
            raise ConfigurationError("Preflight failed:\n  " + "\n  ".join(problems))

    async def deploy_all(self, planned: Sequence[ResourceSpec]) -> dict[str, Contract]:
        """Deploy or reuse every resource, strictly in the given order."""
        for spec in planned:
            await self.deploy(spec)
        return self.contracts

    async def deploy(self, spec: ResourceSpec) -> Contract:
        if spec.library:
            self.libraries.add(spec.name)

        if not self.should_deploy(spec):
            contract = self._reuse(spec)
            self.contracts[spec.name] = contract
            return contract

        artifact = self.artifacts.require(spec.artifact_name)
        args = resolve_refs(list(spec.constructor_args), self.addresses(), self.account, self.params)

        if self.dry_run:
            self._dry_run_counter += 1
            address = "0x" + str(self._dry_run_counter).zfill(40)
            logger.info(f"[DRY RUN] Would deploy {spec.name} ({artifact.name}) with args {args}")
            contract = Contract(spec.name, address, artifact.abi, artifact.name)
            self.contracts[spec.name] = contract
            self.newly_deployed.append(spec.name)
            self.simulated.add(spec.name)
            return contract

        logger.info(f"Deploying {spec.name} ({artifact.name})")
        nonce = await self.nonce_sequencer.reserve() if self.nonce_sequencer else None
        result = await guarded(
            f"Deploy {spec.name}",
            self.backend.deploy(
                artifact, args, self.account,
                nonce=nonce, gas_limit=self.gas_limit, gas_price=self.gas_price,
            ),
        )

        address = result["address"]
        target = Target(
            name=spec.name,
            address=address,
            source=artifact.name,
            link=f"{self.explorer_url}/address/{address}" if self.explorer_url else None,
            time_deployed=datetime.now(timezone.utc),
            txn=result.get("id"),
            network=self.network,
            library=spec.library,
        )
        self._commit(target, artifact.interface)

        logger.info(f"Deployed {spec.name} to {address}")
        contract = Contract(spec.name, address, artifact.abi, artifact.name)
        self.contracts[spec.name] = contract
        self.newly_deployed.append(spec.name)
        return contract

    def addresses(self) -> dict[str, str]:
        """Addresses visible to references: recorded targets overlaid by this run's."""
        addresses = {
            name: target.address for name, target in self.record.targets.items() if target.address
        }
        addresses.update({name: c.address for name, c in self.contracts.items()})
        return addresses

    def registry_contracts(self) -> dict[str, Contract]:
        """Deployed or reused resources that take part in registry reconciliation."""
        return {name: c for name, c in self.contracts.items() if name not in self.libraries}

    def _reuse(self, spec: ResourceSpec) -> Contract:
        target = self.record.targets[spec.name]
        abi = self.record.interface_of(spec.name).get("abi") or []
        if not abi:
            artifact = self.artifacts.get(target.source)
            abi = list(artifact.abi) if artifact else []
        logger.debug(f"Reusing {spec.name} at {target.address}")
        return Contract(spec.name, target.address, tuple(abi), target.source)

    def _commit(self, target: Target, interface: dict[str, Any]) -> None:
        # Single write path for the deployment record
        self.record.record(target, interface)
        self.deployment_store.save(self.record)
        self.config_store.set_deploy(target.name, False)
