"""
Aggregate snapshot reconciler - decides when the cached debt must be recomputed.

Reads cacheInfo() and currentDebt() together and evaluates four independent
triggers. Any one of them refreshes the snapshot through the publicly
callable takeDebtSnapshot(); none of them means no write at all.

- stale: the cache reports itself stale
- invalid: the cache reports itself invalid and every rate is valid
- deviation_exceeded: |current - cached| / cached >= max deviation
  (an empty cache with a non-zero current debt counts as exceeded)
- validity_changed: the cache is valid while some rate is invalid
"""

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from chainorch.executor import StepExecutor
from chainorch.schemas import Contract, StepOutcome, StepRequest, WriteCall

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEVIATION = 0.01

# cost profile -> takeDebtSnapshot gas ceiling
SNAPSHOT_GAS_LIMITS = {
    "standard": 2_500_000,
    "constrained": 3_500_000,
}


class SnapshotTrigger(str, Enum):
    STALE = "stale"
    INVALID = "invalid"
    DEVIATION_EXCEEDED = "deviation_exceeded"
    VALIDITY_CHANGED = "validity_changed"


def _field(value: Any, name: str, index: int) -> Any:
    # Named outputs come back as a mapping or a positional tuple
    if isinstance(value, dict):
        return value[name]
    return value[index]


def deviation_between(cached: int, current: int) -> Optional[Decimal]:
    """Relative deviation of current from cached; None when cached is zero."""
    if cached == 0:
        return None
    return Decimal(abs(current - cached)) / Decimal(cached)


def evaluate_triggers(
    cache_info: Any,
    current_debt: Any,
    max_deviation: float = DEFAULT_MAX_DEVIATION,
) -> tuple[set[SnapshotTrigger], Optional[Decimal]]:
    """
    Compute the set of active triggers.

    Args:
        cache_info: cacheInfo() result (debt, isInvalid, isStale)
        current_debt: currentDebt() result (debt, anyRateIsInvalid)
        max_deviation: Relative deviation that forces a refresh

    Returns:
        (active triggers, observed deviation or None)
    """
    cached = int(_field(cache_info, "debt", 0))
    is_invalid = bool(_field(cache_info, "isInvalid", 1))
    is_stale = bool(_field(cache_info, "isStale", 2))
    current = int(_field(current_debt, "debt", 0))
    any_rate_invalid = bool(_field(current_debt, "anyRateIsInvalid", 1))

    triggers: set[SnapshotTrigger] = set()
    if is_stale:
        triggers.add(SnapshotTrigger.STALE)
    if is_invalid and not any_rate_invalid:
        triggers.add(SnapshotTrigger.INVALID)

    deviation = deviation_between(cached, current)
    if deviation is None:
        if current != 0:
            triggers.add(SnapshotTrigger.DEVIATION_EXCEEDED)
    elif deviation >= Decimal(str(max_deviation)):
        triggers.add(SnapshotTrigger.DEVIATION_EXCEEDED)

    if not is_invalid and any_rate_invalid:
        triggers.add(SnapshotTrigger.VALIDITY_CHANGED)
    return triggers, deviation


@dataclass
class SnapshotReport:
    triggers: set[SnapshotTrigger] = field(default_factory=set)
    deviation: Optional[Decimal] = None
    outcome: StepOutcome = field(default_factory=StepOutcome.noop)

    @property
    def refreshed(self) -> bool:
        return not self.outcome.is_noop


class SnapshotReconciler:
    """Refreshes the debt snapshot when any trigger holds."""

    def __init__(
        self,
        executor: StepExecutor,
        contract: Contract,
        max_deviation: float = DEFAULT_MAX_DEVIATION,
        cost_profile: str = "standard",
    ):
        self.executor = executor
        self.contract = contract
        self.max_deviation = max_deviation
        self.gas_limit = SNAPSHOT_GAS_LIMITS.get(cost_profile, SNAPSHOT_GAS_LIMITS["standard"])

    async def run(self) -> SnapshotReport:
        cache_info, current_debt = await asyncio.gather(
            self.executor.read(self.contract, "cacheInfo"),
            self.executor.read(self.contract, "currentDebt"),
        )
        triggers, deviation = evaluate_triggers(cache_info, current_debt, self.max_deviation)
        report = SnapshotReport(triggers=triggers, deviation=deviation)

        if not triggers:
            logger.info("No snapshot required.")
            return report

        reasons = ", ".join(sorted(t.value for t in triggers))
        if deviation is not None:
            reasons += f" (deviation {deviation * 100:.2f}%)"
        logger.info(f"Refreshing debt snapshot: {reasons}")

        report.outcome = await self.executor.ensure(StepRequest(
            contract=self.contract,
            write=WriteCall("takeDebtSnapshot", [], gas_limit=self.gas_limit, publicly_callable=True),
        ))
        logger.info("Snapshot complete.")
        return report
