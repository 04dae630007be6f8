"""
chainorch.schemas - Data structures shared by every reconciliation phase.

ResourceSpec -> (planner) -> Target in DeploymentRecord -> Contract
StepRequest -> (executor) -> StepOutcome, optionally a PendingAction

- ResourceSpec / Artifact: declarative input and compiled definition
- Target / DeploymentRecord: persisted per-environment deployment state
- Contract: runtime handle for a deployed or reused resource
- ReadProbe / WriteCall / StepRequest / StepOutcome: the ensure() contract
- PendingAction: a write deferred for lack of privilege
"""

from .resource import (
    ResourceSpec,
    Artifact,
    Contract,
    deployed_refs,
)
from .deployment import (
    Target,
    DeploymentRecord,
)
from .pending import (
    PendingAction,
)
from .step import (
    ReadProbe,
    WriteCall,
    StepRequest,
    StepOutcome,
    OutcomeKind,
    Equals,
    equals,
    truthy,
    differs_from,
)

__all__ = [
    # Resources
    "ResourceSpec",
    "Artifact",
    "Contract",
    "deployed_refs",
    # Deployment record
    "Target",
    "DeploymentRecord",
    # Pending actions
    "PendingAction",
    # Steps
    "ReadProbe",
    "WriteCall",
    "StepRequest",
    "StepOutcome",
    "OutcomeKind",
    "Equals",
    "equals",
    "truthy",
    "differs_from",
]
