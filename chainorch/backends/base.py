"""
Backend protocol and common helpers.

A backend is the transactional boundary the core talks to: reads, state
changing submissions, deployments and the current nonce of an account. Its
concrete protocol is up to the implementation; the core only depends on this
interface.

Error classification at the boundary:
- TransientError/PermanentError raised by the backend propagate unchanged
- Builtin TimeoutError -> TransientError (safe to retry the whole run)
- Unknown exceptions -> PermanentError (fail fast, no string matching)
"""

import importlib
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, TypeVar

from chainorch.errors import PermanentError, TransientError
from chainorch.schemas import Artifact

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Backend(ABC):
    """
    Abstract base class for chain backends.

    All I/O methods are coroutines so reads can be fanned out concurrently.
    """

    @abstractmethod
    async def call(self, address: str, function: str, args: list[Any]) -> Any:
        """Read-only call. Returns the decoded result."""
        pass

    @abstractmethod
    async def submit(
        self,
        address: str,
        function: str,
        args: list[Any],
        account: str,
        nonce: Optional[int] = None,
        gas_limit: Optional[int] = None,
        gas_price: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Submit a state-changing call.

        Args:
            nonce: Explicit sequence number; None lets the backend assign it

        Returns:
            {"id": <submission id>}
        """
        pass

    @abstractmethod
    async def deploy(
        self,
        artifact: Artifact,
        args: list[Any],
        account: str,
        nonce: Optional[int] = None,
        gas_limit: Optional[int] = None,
        gas_price: Optional[int] = None,
    ) -> dict[str, Any]:
        """
        Deploy an artifact.

        Returns:
            {"id": <submission id>, "address": <new address>}
        """
        pass

    @abstractmethod
    async def get_current_nonce(self, account: str) -> int:
        """Next sequence number the backend expects from account."""
        pass

    @abstractmethod
    def encode_call(self, address: str, function: str, args: list[Any]) -> str:
        """Encode a call payload for out-of-band execution."""
        pass


async def guarded(action: str, awaitable: Awaitable[T]) -> T:
    """
    Await a backend operation, classifying any failure.

    Args:
        action: Description used in the error message ("Issuer.addPynths(...)")
        awaitable: The backend coroutine

    Raises:
        TransientError: Timeout (safe to retry the run)
        PermanentError: Anything else
    """
    try:
        return await awaitable
    except TransientError:
        raise  # Already classified, propagate
    except PermanentError:
        raise  # Already classified, propagate
    except TimeoutError as e:
        raise TransientError(str(e) or "timed out", action=action) from e
    except Exception as e:
        raise PermanentError(str(e), action=action) from e


# =============================================================================
# SECURE FACTORY LOADER
# =============================================================================

# Only exact matches or submodules allowed (prefix + ".")
ALLOWED_BACKEND_MODULES = [
    "chainorch.backends",
]


def _is_allowed_module(module_path: str) -> bool:
    """Check if module is in allowlist (exact match or submodule)."""
    for allowed in ALLOWED_BACKEND_MODULES:
        if module_path == allowed or module_path.startswith(allowed + "."):
            return True
    return False


def load_backend_factory(factory_path: str) -> Callable[..., Backend]:
    """Load a backend factory by dotted path string.

    Only allows factories from allowlisted modules (exact match or submodules).

    Args:
        factory_path: e.g. "chainorch.backends.memory:create_backend"

    Returns:
        The callable factory function

    Raises:
        ValueError: If path not in allowlist or malformed
        ImportError: If module not found
        AttributeError: If function not found in module
        TypeError: If attribute is not callable
    """
    if ":" not in factory_path:
        raise ValueError(f"Factory path must be 'module:function', got: {factory_path}")

    module_path, func_name = factory_path.rsplit(":", 1)

    if not _is_allowed_module(module_path):
        raise ValueError(
            f"Factory module '{module_path}' not in allowlist. "
            f"Allowed: {ALLOWED_BACKEND_MODULES}"
        )

    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ImportError(f"Cannot import factory module '{module_path}': {e}") from e

    try:
        factory = getattr(module, func_name)
    except AttributeError as e:
        raise AttributeError(
            f"Factory function '{func_name}' not found in '{module_path}': {e}"
        ) from e

    if not callable(factory):
        raise TypeError(f"{factory_path} is not callable")

    return factory
