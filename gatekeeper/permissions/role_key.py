"""Role key grammar.

A role key names one permission and has one of two canonical string forms:

    namespace:action           e.g. "reporting:create", "global:admin"
    namespace:subject:action   e.g. "channel:42:post"

Role keys are exchanged as strings everywhere outside this process and are
parsed into an immutable ``RoleKey`` value at the boundary. The namespace
helpers at the bottom validate the action against the enumerated set for that
namespace before building a key.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Optional, Union

from gatekeeper.core.exceptions import InvalidAction, MalformedRoleKey

SEPARATOR = ":"
ADMIN_ACTION = "admin"


def _check_segment(raw: str, value, label: str) -> None:
    if not isinstance(value, str) or not value:
        raise MalformedRoleKey(raw, f"{label} must be a non-empty string")
    if SEPARATOR in value:
        raise MalformedRoleKey(raw, f"{label} must not contain '{SEPARATOR}'")


@dataclass(frozen=True)
class RoleKey:
    namespace: str
    subject: Optional[str]
    action: str

    def __post_init__(self):
        raw = build_role_key(
            str(self.namespace), None if self.subject is None else str(self.subject), str(self.action)
        )
        _check_segment(raw, self.namespace, "namespace")
        if self.subject is not None:
            _check_segment(raw, self.subject, "subject")
        _check_segment(raw, self.action, "action")

    @classmethod
    def parse(cls, raw: str) -> "RoleKey":
        if not isinstance(raw, str):
            raise MalformedRoleKey(repr(raw), "role key must be a string")
        parts = raw.split(SEPARATOR)
        if len(parts) == 2:
            namespace, action = parts
            subject = None
        elif len(parts) == 3:
            namespace, subject, action = parts
        else:
            raise MalformedRoleKey(raw, f"expected 2 or 3 segments, got {len(parts)}")
        if not all(parts):
            raise MalformedRoleKey(raw, "empty segment")
        return cls(namespace=namespace, subject=subject, action=action)

    @classmethod
    def coerce(cls, value: Union["RoleKey", str]) -> "RoleKey":
        if isinstance(value, RoleKey):
            return value
        return cls.parse(value)

    @property
    def key(self) -> str:
        return build_role_key(self.namespace, self.subject, self.action)

    def with_action(self, action: str) -> "RoleKey":
        """Same namespace and subject, different action."""
        return RoleKey(namespace=self.namespace, subject=self.subject, action=action)

    def same_scope(self, other: "RoleKey") -> bool:
        return self.namespace == other.namespace and self.subject == other.subject

    def __str__(self) -> str:
        return self.key


RoleKeyLike = Union[RoleKey, str]


def parse_role_key(raw: str) -> RoleKey:
    return RoleKey.parse(raw)


def build_role_key(namespace: str, subject: Optional[str], action: str) -> str:
    if subject is None:
        return f"{namespace}{SEPARATOR}{action}"
    return f"{namespace}{SEPARATOR}{subject}{SEPARATOR}{action}"


# ---- Namespace helpers ----

CHANNEL_ACTIONS: FrozenSet[str] = frozenset({"read", "post", "admin"})
BROADCAST_ACTIONS: FrozenSet[str] = frozenset({"create"})
REPORTING_ACTIONS: FrozenSet[str] = frozenset(
    {"read", "create", "update", "delete", "assign", "admin"}
)
GLOBAL_ACTIONS: FrozenSet[str] = frozenset({"admin", "create-invite"})


def _checked(namespace: str, action: str, allowed: FrozenSet[str]) -> None:
    if action not in allowed:
        raise InvalidAction(namespace, action, allowed)


def channel_role(action: str, channel_id: Union[int, str]) -> RoleKey:
    """Role for ``action`` on one channel, e.g. ``channel:42:post``."""
    _checked("channel", action, CHANNEL_ACTIONS)
    return RoleKey(namespace="channel", subject=str(channel_id), action=action)


def broadcast_role(action: str) -> RoleKey:
    """Role for mass messaging features, e.g. ``broadcast:create``."""
    _checked("broadcast", action, BROADCAST_ACTIONS)
    return RoleKey(namespace="broadcast", subject=None, action=action)


def reporting_role(action: str) -> RoleKey:
    """Role for the reporting feature, e.g. ``reporting:read``."""
    _checked("reporting", action, REPORTING_ACTIONS)
    return RoleKey(namespace="reporting", subject=None, action=action)


def global_role(action: str) -> RoleKey:
    _checked("global", action, GLOBAL_ACTIONS)
    return RoleKey(namespace="global", subject=None, action=action)


GLOBAL_ADMIN = global_role("admin")
GLOBAL_CREATE_INVITE = global_role("create-invite")

# Superuser: passes every check.
GLOBAL_ADMIN_KEY = GLOBAL_ADMIN.key
GLOBAL_CREATE_INVITE_KEY = GLOBAL_CREATE_INVITE.key

NAMESPACE_ACTIONS = {
    "channel": CHANNEL_ACTIONS,
    "broadcast": BROADCAST_ACTIONS,
    "reporting": REPORTING_ACTIONS,
    "global": GLOBAL_ACTIONS,
}


def check_action(role_key: RoleKeyLike) -> RoleKey:
    """Parse ``role_key`` and check its action against its namespace.

    Namespaces without an enumerated action set accept any action.
    """
    role_key = RoleKey.coerce(role_key)
    allowed = NAMESPACE_ACTIONS.get(role_key.namespace)
    if allowed is not None:
        _checked(role_key.namespace, role_key.action, allowed)
    return role_key
