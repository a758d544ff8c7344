"""Custom exception classes for the permission engine."""

from typing import Optional


class GatekeeperError(Exception):
    """Base exception for Gatekeeper."""

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


# ---- Domain errors: expected control flow, safe to show to a caller ----

class DomainError(GatekeeperError):
    """Base class for errors a caller is expected to handle."""
    pass


class MalformedRoleKey(DomainError):
    """Raised when a role key does not parse into 2 or 3 segments."""

    def __init__(self, raw: str, reason: Optional[str] = None):
        self.raw = raw
        message = f"Malformed role key: '{raw}'"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidAction(DomainError):
    """Raised when an action is not allowed for its namespace."""

    def __init__(self, namespace: str, action: str, allowed=()):
        self.namespace = namespace
        self.action = action
        message = f"Invalid action '{action}' for namespace '{namespace}'"
        if allowed:
            message = f"{message}. Must be one of: {sorted(allowed)}"
        super().__init__(message)


class RoleNotFound(DomainError):
    """Raised when a role key has no provisioned role."""

    def __init__(self, role_key: str):
        self.role_key = role_key
        super().__init__(f"Role '{role_key}' not found")


class UnknownIdentity(DomainError):
    """Raised when a grant target does not exist."""

    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"User '{identity}' not found")


class Forbidden(DomainError):
    """Raised when the caller lacks permission for an administrative action."""
    pass


class ValidationError(DomainError):
    """Raised when input validation fails or an invite code is unusable."""
    pass


class InviteCodeNotFound(ValidationError):
    """Raised when an invite code id does not exist."""

    def __init__(self, code_id: int):
        self.code_id = code_id
        super().__init__(f"Invite code {code_id} not found")


# ---- Infrastructure errors: never a permission decision ----

class InfrastructureError(GatekeeperError):
    """Base class for storage/cache transport failures."""
    pass


class StoreUnavailableError(InfrastructureError):
    """Raised when the role store cannot answer."""
    pass


class CacheUnavailableError(InfrastructureError):
    """Raised when a cache write that must be observed fails."""
    pass


class InternalError(InfrastructureError):
    """Raised when an operation fails for reasons outside the caller's control."""
    pass
