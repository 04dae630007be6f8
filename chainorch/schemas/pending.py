"""
PendingAction schema - a write the run was not privileged to perform.

Entries are keyed by the action description ("Contract.function(args)") so
re-queuing the same logical call overwrites rather than duplicates. The core
only ever creates entries with complete=False; an out-of-band privileged
executor flips the flag.
"""

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class PendingAction:
    """
    Attributes:
        key: Stable identity of the call (also the ledger key)
        target: Address the call is made against
        action: Human-readable description of the call
        data: Encoded call payload
        complete: Set by the privileged executor once applied
        link: Explorer link for manual execution (if configured)
    """
    key: str
    target: str
    action: str
    data: str
    complete: bool = False
    link: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "target": self.target,
            "action": self.action,
            "complete": self.complete,
            "data": self.data,
        }
        if self.link is not None:
            result["link"] = self.link
        return result

    @classmethod
    def from_dict(cls, key: str, data: dict[str, Any]) -> "PendingAction":
        return cls(
            key=key,
            target=data.get("target", ""),
            action=data.get("action", key),
            data=data.get("data", ""),
            complete=bool(data.get("complete", False)),
            link=data.get("link"),
        )
