"""Error taxonomy of the provisioning engine.

Recoverable errors (``NotFoundError``, ``ConflictError``, ``TransientError``) are
absorbed by the resolver and the retry controller. Everything deriving from
``FatalProvisioningError`` aborts the enclosing variant and is reported in its result.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .model import ResourceType


class ProvisioningError(RuntimeError):
    """Base class for engine errors."""


class RemoteCallError(ProvisioningError):
    """Raised by adapters when a call to the remote API fails."""


class RemoteStatusError(RemoteCallError):
    """The remote API answered with a non-success HTTP status."""

    def __init__(self, message: str, *, status_code: int, body: object = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NotFoundError(ProvisioningError):
    """Referenced object is absent; recoverable by creating it."""


class ConflictError(ProvisioningError):
    """Uniqueness violation; recoverable by search-and-reuse or disambiguated retry."""


class TransientError(ProvisioningError):
    """Network or server failure; recoverable by retrying with backoff."""


class RemoteTransportError(RemoteCallError, TransientError):
    """The request never produced a response (connect, read, protocol failures)."""


class FatalProvisioningError(ProvisioningError):
    """Aborts the target being resolved and its variant."""


class RemoteFatalError(FatalProvisioningError):
    """Non-recoverable remote failure, including exhausted transient retries."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConflictUnresolvedError(FatalProvisioningError):
    """Conflict persisted after search and disambiguated retry with no fallback."""

    def __init__(self, resource_type: ResourceType, label: str) -> None:
        super().__init__(f"Unresolved conflict for {resource_type} {label!r}")
        self.resource_type = resource_type
        self.label = label


class PayloadValidationError(FatalProvisioningError):
    """Payload or template is malformed; never retried."""

    def __init__(self, message: str, *, problems: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.problems = problems


class ScopeError(FatalProvisioningError):
    """A collection has no organisational scope."""


class MissingReferenceError(FatalProvisioningError):
    """A well-known object that must not be created could not be found."""


class UnresolvedDependencyError(FatalProvisioningError):
    """A payload was requested before all of its dependencies were resolved."""
