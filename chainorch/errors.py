"""
Error classes for chainorch runs.

Every fatal condition raised by the core derives from ChainorchError so the
CLI can report it and exit non-zero:

- ConfigurationError: detected before any transaction is sent (cyclic or
  unknown dependencies, reuse without a recorded address, unknown artifact).
  Never retried.
- BackendError: a read, submission or deployment failed at the backend
  boundary. TransientError / PermanentError classify the failure for an
  external retry wrapper; inside the core both abort the run.
- ConsistencyError: the backend disagrees with what the run just did
  (a rebuilt cache still stale, an imported binding that does not resolve).

A step that could not be applied for lack of privilege is NOT an error: it is
reported as a queued StepOutcome.
"""

from typing import Optional


class ChainorchError(Exception):
    """Base exception for chainorch."""
    pass


class ConfigurationError(ChainorchError):
    """Invalid declarative input. Raised before any backend I/O."""
    pass


class ConfigError(ConfigurationError):
    """Invalid or missing chainorch configuration file."""
    pass


class ManifestError(ConfigurationError):
    """Invalid per-environment input document (config.json, resources.json, ...)."""
    pass


class DependencyError(ConfigurationError):
    """Dependency graph contains a cycle or references an unknown resource."""

    def __init__(self, message: str, names: Optional[list[str]] = None):
        self.names = list(names or [])
        super().__init__(message)


class BackendError(ChainorchError):
    """
    Backend I/O failure.

    Attributes:
        action: Description of the call that failed (e.g. "Issuer.addPynths(...)")
    """

    def __init__(self, message: str, action: Optional[str] = None):
        self.action = action
        if action:
            message = f"{action}: {message}"
        super().__init__(message)


class TransientError(BackendError):
    """
    Transient backend error - an external wrapper may retry the whole run.

    Examples:
    - Request timeout
    - Connection reset
    - Provider rate limit
    """
    pass


class PermanentError(BackendError):
    """
    Permanent backend error - retrying will not help.

    Examples:
    - Submission reverted
    - Unknown function on target
    - Malformed arguments
    """
    pass


class ConsistencyError(ChainorchError):
    """Backend state contradicts the run's own record of what it did."""

    def __init__(self, resource: str, message: str):
        self.resource = resource
        super().__init__(f"{resource}: {message}")
