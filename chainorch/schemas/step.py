"""
Step schemas - the request/outcome pair of the step executor.

A StepRequest names a contract, an optional read probe that tells whether the
desired state already holds, and the write that establishes it. ensure()
answers with a StepOutcome: NOOP, SUBMITTED (with id) or QUEUED (with the
pending-action key).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from chainorch.schemas.resource import Contract


Predicate = Callable[[Any], bool]


def _same(a: Any, b: Any) -> bool:
    # Addresses and hex strings compare case-insensitively
    if isinstance(a, str) and isinstance(b, str):
        if a.startswith("0x") and b.startswith("0x"):
            return a.lower() == b.lower()
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(_same(x, y) for x, y in zip(a, b))
    return a == b


@dataclass(frozen=True)
class Equals:
    """Predicate: value equals expected (hex strings case-insensitively).

    ensure_chunked() slices a list-valued expected alongside the arguments.
    """
    expected: Any

    def __call__(self, value: Any) -> bool:
        return _same(value, self.expected)


def equals(expected: Any) -> Predicate:
    return Equals(expected)


def truthy() -> Predicate:
    return lambda value: bool(value)


def differs_from(unexpected: Any) -> Predicate:
    """Predicate: value is anything but unexpected."""
    return lambda value: not _same(value, unexpected)


@dataclass(frozen=True)
class ReadProbe:
    """Read that decides whether a step is already satisfied."""
    function: str
    args: tuple = ()
    expected: Predicate = truthy()

    def satisfied_by(self, value: Any) -> bool:
        return bool(self.expected(value))


@dataclass(frozen=True)
class WriteCall:
    """
    The write that establishes the desired state.

    Attributes:
        function: Function to call on the contract
        args: Arguments; normalized to a list before keying
        gas_limit: Per-call gas ceiling (None uses the configured default)
        publicly_callable: Anyone may call it, not just the owner
    """
    function: str
    args: Any = ()
    gas_limit: Optional[int] = None
    publicly_callable: bool = False


@dataclass(frozen=True)
class StepRequest:
    contract: Contract
    write: WriteCall
    read: Optional[ReadProbe] = None
    batch_limit: Optional[int] = None

    def __post_init__(self):
        if self.batch_limit is not None and self.batch_limit < 1:
            raise ValueError(f"batch_limit must be >= 1, got {self.batch_limit}")


class OutcomeKind(str, Enum):
    """Kind of step outcome."""
    NOOP = "noop"
    SUBMITTED = "submitted"
    QUEUED = "queued"


@dataclass(frozen=True)
class StepOutcome:
    """
    Result of ensure().

    Attributes:
        kind: noop, submitted or queued
        id: Submission id (submitted only)
        key: Pending-action key (queued only)
    """
    kind: OutcomeKind
    id: Optional[str] = None
    key: Optional[str] = None

    def __post_init__(self):
        if self.kind == OutcomeKind.SUBMITTED and not self.id:
            raise ValueError("Submitted outcome requires an id")
        if self.kind != OutcomeKind.SUBMITTED and self.id is not None:
            raise ValueError(f"{self.kind.value} outcome cannot carry an id")

    @classmethod
    def noop(cls) -> "StepOutcome":
        return cls(kind=OutcomeKind.NOOP)

    @classmethod
    def submitted(cls, id: str) -> "StepOutcome":
        return cls(kind=OutcomeKind.SUBMITTED, id=id)

    @classmethod
    def queued(cls, key: str) -> "StepOutcome":
        return cls(kind=OutcomeKind.QUEUED, key=key)

    @property
    def is_noop(self) -> bool:
        return self.kind == OutcomeKind.NOOP

    @property
    def is_submitted(self) -> bool:
        return self.kind == OutcomeKind.SUBMITTED

    @property
    def is_queued(self) -> bool:
        return self.kind == OutcomeKind.QUEUED

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind.value}
        if self.id is not None:
            result["id"] = self.id
        if self.key is not None:
            result["key"] = self.key
        return result
