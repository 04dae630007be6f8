"""
Owner-fallback strategies.

When the run's account may not perform a write, the executor hands the
encoded call to a strategy:

- QueueForLater: upsert into the pending action ledger (default; resumable)
- InteractiveConfirm: show the payload and block until the operator confirms
  the owner has executed it, then re-check the step's read probe

The executor only depends on the OwnerFallback interface.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import click

from chainorch.schemas import PendingAction, StepOutcome
from chainorch.stores import PendingActionLedger
from chainorch.utils import stringify

logger = logging.getLogger(__name__)

Recheck = Callable[[], Awaitable[bool]]


class OwnerFallback(ABC):

    @abstractmethod
    async def defer(self, action: PendingAction, recheck: Recheck) -> StepOutcome:
        """
        Handle a write the account is not privileged to make.

        Args:
            action: The encoded call, keyed by its identity
            recheck: Re-evaluates the step's read probe (False when it has none)

        Returns:
            NOOP if the desired state now holds, otherwise QUEUED
        """
        pass


class QueueForLater(OwnerFallback):
    """Record the action in the ledger for an out-of-band privileged executor."""

    def __init__(self, ledger: PendingActionLedger, dry_run: bool = False):
        self.ledger = ledger
        self.dry_run = dry_run

    async def defer(self, action: PendingAction, recheck: Recheck) -> StepOutcome:
        if self.dry_run:
            logger.info(
                f"[DRY RUN] Would append owner action of the following:\n"
                f"{stringify(action.to_dict())}"
            )
        else:
            self.ledger.upsert(action)
            logger.info(f"Cannot invoke {action.key} as not owner. Appended to actions.")
        return StepOutcome.queued(action.key)


class InteractiveConfirm(OwnerFallback):
    """
    Ask the operator to have the owner execute the call now.

    confirm is called off the event loop; it defaults to click.confirm.
    """

    def __init__(
        self,
        confirm: Optional[Callable[[str], bool]] = None,
        echo: Callable[[str], None] = click.echo,
    ):
        self.confirm = confirm or (lambda prompt: click.confirm(prompt, default=False))
        self.echo = echo

    async def defer(self, action: PendingAction, recheck: Recheck) -> StepOutcome:
        self.echo(f"Owner action required: {action.key}")
        self.echo(f"  target: {action.target}")
        self.echo(f"  data:   {action.data}")
        if action.link:
            self.echo(f"  link:   {action.link}")

        confirmed = await asyncio.to_thread(
            self.confirm,
            "Please confirm once the owner's transaction has been mined, not earlier",
        )
        if not confirmed:
            logger.info(f"Cancelled {action.key}")
            return StepOutcome.queued(action.key)

        if await recheck():
            logger.info(f"Owner completed {action.key}")
            return StepOutcome.noop()

        logger.warning(f"{action.key} still not applied after confirmation")
        return StepOutcome.queued(action.key)
