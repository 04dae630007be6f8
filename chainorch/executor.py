"""
Transactional step executor - the "ensure state X" primitive.

ensure(request) runs one step through three branches:

1. Read probe satisfied -> NOOP. Nothing is ever submitted for a state that
   already holds, which is what makes every reconciler safe to re-run.
2. Account is the contract owner, or the write is publicly callable ->
   SUBMITTED. A nonce comes from the NonceSequencer when one is configured;
   otherwise writes are serialized so the backend assigns sequencing
   unambiguously. Dry runs return a synthetic, monotonically increasing id
   and never call submit().
3. Otherwise -> the owner-fallback strategy (queue in the ledger, or ask the
   operator), normally QUEUED.

Backend failures are classified (TransientError/PermanentError) and abort the
run; recovery is re-running, which is safe because of branch 1.

Usage:
    executor = StepExecutor(backend, account, QueueForLater(ledger))
    outcome = await executor.ensure(StepRequest(
        contract=issuer,
        read=ReadProbe("resolver", expected=equals(resolver_address)),
        write=WriteCall("setResolver", resolver_address),
    ))
"""

import asyncio
import logging
from collections import Counter
from dataclasses import replace
from typing import Any, Iterable, Optional, Sequence

from chainorch.backends.base import Backend, guarded
from chainorch.nonce import NonceSequencer
from chainorch.owner_actions import OwnerFallback
from chainorch.schemas import (
    Contract,
    Equals,
    OutcomeKind,
    PendingAction,
    ReadProbe,
    StepOutcome,
    StepRequest,
)
from chainorch.utils import bounded_gather, chunked, from_bytes32, is_bytes32, same_address

logger = logging.getLogger(__name__)


def normalize_args(value: Any) -> list[Any]:
    """None -> [], scalar -> [scalar], list/tuple -> list (Nones dropped)."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [v for v in value if v is not None]
    return [value]


def render_arg(arg: Any) -> str:
    if isinstance(arg, (list, tuple)):
        return ",".join(render_arg(a) for a in arg)
    if isinstance(arg, bool):
        return "true" if arg else "false"
    if is_bytes32(arg):
        return from_bytes32(arg)
    return str(arg)


def describe_call(contract_name: str, function: str, args: Sequence[Any]) -> str:
    """Stable identity of a call: "Contract.function(arg,...)"."""
    return f"{contract_name}.{function}({','.join(render_arg(a) for a in args)})"


class StepExecutor:
    """
    Executes StepRequests against a backend on behalf of one account.

    Attributes:
        stats: Counter of outcomes by kind ("noop", "submitted", "queued")
    """

    def __init__(
        self,
        backend: Backend,
        account: str,
        fallback: OwnerFallback,
        dry_run: bool = False,
        nonce_sequencer: Optional[NonceSequencer] = None,
        concurrency: int = 10,
        gas_price: Optional[int] = None,
        default_gas_limit: Optional[int] = None,
        explorer_url: Optional[str] = None,
    ):
        self.backend = backend
        self.account = account
        self.fallback = fallback
        self.dry_run = dry_run
        self.nonce_sequencer = nonce_sequencer
        self.concurrency = concurrency
        self.gas_price = gas_price
        self.default_gas_limit = default_gas_limit
        self.explorer_url = explorer_url.rstrip("/") if explorer_url else None
        self.stats: Counter = Counter()
        self._write_lock = asyncio.Lock()
        self._dry_run_counter = 0

    # -- reads ----------------------------------------------------------------

    async def read(self, contract: Contract, function: str, args: Iterable[Any] = ()) -> Any:
        """Read-only call; failures are classified and fatal."""
        args = list(args)
        return await guarded(
            describe_call(contract.name, function, args),
            self.backend.call(contract.address, function, args),
        )

    async def probe(self, contract: Contract, read: ReadProbe) -> bool:
        value = await self.read(contract, read.function, normalize_args(read.args))
        return read.satisfied_by(value)

    async def _is_satisfied(self, request: StepRequest) -> bool:
        if request.read is None:
            return False
        return await self.probe(request.contract, request.read)

    async def is_authorized(self, request: StepRequest) -> bool:
        """Publicly callable, or the account owns the contract."""
        if request.write.publicly_callable:
            return True
        if not request.contract.has_function("owner"):
            return False
        owner = await self.read(request.contract, "owner")
        if same_address(owner, self.account):
            return True
        logger.info(f"  > Account {self.account} is not owner {owner}")
        return False

    # -- ensure ---------------------------------------------------------------

    async def ensure(self, request: StepRequest) -> StepOutcome:
        """Run one step. See module docstring for the three branches."""
        key = self._key(request)
        logger.info(f"Attempting action: {key}")
        if await self._is_satisfied(request):
            return self._record(key, StepOutcome.noop())
        return await self._apply(request, key)

    async def ensure_all(self, requests: Sequence[StepRequest]) -> list[StepOutcome]:
        """
        Ensure many independent steps.

        Read probes are evaluated concurrently (bounded by concurrency). Writes
        for unsatisfied steps then go out in request order; with a nonce
        sequencer they are dispatched without waiting on each other.
        """
        requests = list(requests)
        satisfied = await bounded_gather(
            (self._is_satisfied(r) for r in requests), self.concurrency
        )
        outcomes: list[Optional[StepOutcome]] = [None] * len(requests)
        pending: list[int] = []
        for index, (request, ok) in enumerate(zip(requests, satisfied)):
            key = self._key(request)
            logger.info(f"Attempting action: {key}")
            if ok:
                outcomes[index] = self._record(key, StepOutcome.noop())
            else:
                pending.append(index)

        if self.nonce_sequencer is not None and not self.dry_run:
            applied = await bounded_gather(
                (self._apply(requests[i], self._key(requests[i])) for i in pending),
                self.concurrency,
            )
            for index, outcome in zip(pending, applied):
                outcomes[index] = outcome
        else:
            for index in pending:
                outcomes[index] = await self._apply(requests[index], self._key(requests[index]))
        return [o for o in outcomes if o is not None]

    async def ensure_chunked(self, request: StepRequest) -> list[StepOutcome]:
        """
        Split a batched write into groups of request.batch_limit and ensure each.

        The first write argument must be a list. Every list argument of the
        same length (in the write and the read probe) is split in step with it,
        and so is an equality expectation on a list of that length.
        """
        args = normalize_args(request.write.args)
        if request.batch_limit is None or not args or not isinstance(args[0], (list, tuple)):
            return [await self.ensure(request)]
        size = len(args[0])
        outcomes = []
        for start in range(0, size, request.batch_limit):
            end = start + request.batch_limit
            write = replace(request.write, args=_slice_parallel(args, size, start, end))
            read = request.read
            if read is not None:
                read = replace(
                    read,
                    args=tuple(_slice_parallel(normalize_args(read.args), size, start, end)),
                    expected=_slice_expected(read.expected, size, start, end),
                )
            outcomes.append(await self.ensure(replace(request, write=write, read=read, batch_limit=None)))
        return outcomes

    # -- internals ------------------------------------------------------------

    def _key(self, request: StepRequest) -> str:
        return describe_call(
            request.contract.name,
            request.write.function,
            normalize_args(request.write.args),
        )

    def _record(self, key: str, outcome: StepOutcome) -> StepOutcome:
        self.stats[outcome.kind.value] += 1
        if outcome.kind == OutcomeKind.NOOP:
            logger.debug(f"Nothing required for {key}")
        return outcome

    async def _apply(self, request: StepRequest, key: str) -> StepOutcome:
        if await self.is_authorized(request):
            return self._record(key, await self._submit(request, key))
        return self._record(key, await self._defer(request, key))

    async def _submit(self, request: StepRequest, key: str) -> StepOutcome:
        args = normalize_args(request.write.args)
        gas_limit = request.write.gas_limit or self.default_gas_limit

        if self.dry_run:
            self._dry_run_counter += 1
            tx_id = "0x" + str(self._dry_run_counter).zfill(64)
            logger.info(f"[DRY RUN] Successfully completed {key} in hash: {tx_id}")
            return StepOutcome.submitted(tx_id)

        if self.nonce_sequencer is not None:
            nonce = await self.nonce_sequencer.reserve()
            result = await guarded(key, self.backend.submit(
                request.contract.address, request.write.function, args, self.account,
                nonce=nonce, gas_limit=gas_limit, gas_price=self.gas_price,
            ))
        else:
            async with self._write_lock:
                result = await guarded(key, self.backend.submit(
                    request.contract.address, request.write.function, args, self.account,
                    nonce=None, gas_limit=gas_limit, gas_price=self.gas_price,
                ))

        logger.info(f"Successfully completed {key} in hash: {result['id']}")
        return StepOutcome.submitted(result["id"])

    async def _defer(self, request: StepRequest, key: str) -> StepOutcome:
        args = normalize_args(request.write.args)
        address = request.contract.address
        action = PendingAction(
            key=key,
            target=address,
            action=f"{request.write.function}({','.join(render_arg(a) for a in args)})",
            data=self.backend.encode_call(address, request.write.function, args),
            link=f"{self.explorer_url}/address/{address}#writeContract" if self.explorer_url else None,
        )

        async def recheck() -> bool:
            return await self._is_satisfied(request)

        return await self.fallback.defer(action, recheck)


def _slice_parallel(args: list[Any], size: int, start: int, end: int) -> list[Any]:
    return [
        list(a[start:end]) if isinstance(a, (list, tuple)) and len(a) == size else a
        for a in args
    ]


def _slice_expected(predicate, size: int, start: int, end: int):
    if isinstance(predicate, Equals):
        expected = predicate.expected
        if isinstance(expected, (list, tuple)) and len(expected) == size:
            return Equals(list(expected[start:end]))
    return predicate
