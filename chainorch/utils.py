"""
Utility functions for chainorch.

Includes logging, JSON file writing, bytes32 name encoding and bounded
asynchronous fan-out.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Iterable, Optional, Sequence, TypeVar

from rich.console import Console
from rich.logging import RichHandler


# Global console for pretty output
console = Console()

ZERO_ADDRESS = "0x" + "0" * 40

T = TypeVar("T")


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    log_format: str = "structured",
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for a chainorch run.

    Args:
        log_file: Path to log file (None disables file logging)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (human-readable)
        console_output: Also log to console

    Returns:
        Configured logger
    """
    logger = logging.getLogger("chainorch")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        if log_format == "structured":
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
        logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(console=console, rich_tracebacks=True, show_time=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(
                logging.Formatter("%(levelname)s: %(message)s")
            )
        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "resource"):
            log_data["resource"] = record.resource
        if hasattr(record, "action"):
            log_data["action"] = record.action
        if hasattr(record, "outcome"):
            log_data["outcome"] = record.outcome

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def stringify(data: Any) -> str:
    """Serialize a document the way every chainorch JSON file is written.

    Keys sorted, tab indentation, trailing newline - keeps diffs minimal.
    """
    return json.dumps(data, indent="\t", sort_keys=True) + "\n"


def write_json(path: Path, data: Any) -> None:
    """Rewrite a JSON document in full."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        f.write(stringify(data))
    tmp_path.replace(path)


def read_json(path: Path, default: Any = None) -> Any:
    """Read a JSON document, returning ``default`` if the file is absent."""
    if not path.exists():
        return default
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def to_bytes32(name: str) -> str:
    """Encode an ASCII name as a right-padded bytes32 hex string."""
    raw = name.encode("ascii")
    if len(raw) > 32:
        raise ValueError(f"Name longer than 32 bytes: {name}")
    return "0x" + raw.hex().ljust(64, "0")


def from_bytes32(value: str) -> str:
    """Decode a bytes32 hex string back to its ASCII name."""
    hex_part = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(hex_part).rstrip(b"\x00").decode("ascii", errors="replace")


def is_bytes32(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("0x") and len(value) == 66


def same_address(a: Any, b: Any) -> bool:
    """Case-insensitive address comparison."""
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    return a.lower() == b.lower()


def is_zero_address(value: Any) -> bool:
    return not value or same_address(value, ZERO_ADDRESS)


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into consecutive groups of at most ``size``."""
    if size < 1:
        raise ValueError(f"Chunk size must be >= 1, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


async def bounded_gather(aws: Iterable[Awaitable[T]], limit: int) -> list[T]:
    """
    Await all awaitables with at most ``limit`` in flight.

    Results are returned in input order. The first exception propagates.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(aw: Awaitable[T]) -> T:
        async with semaphore:
            return await aw

    return list(await asyncio.gather(*(_run(aw) for aw in aws)))
