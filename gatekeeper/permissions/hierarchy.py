"""Per-namespace privilege hierarchies.

Each namespace maps to its actions ordered from highest to lowest privilege.
An action implies every action listed after it in the same namespace and
subject: ``channel:1:admin`` implies ``channel:1:post`` and ``channel:1:read``.

To extend for a new namespace, add an entry to ``ROLE_HIERARCHIES``. A
namespace without an entry only ever matches exactly.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Sequence, Tuple

ROLE_HIERARCHIES: Mapping[str, Tuple[str, ...]] = MappingProxyType({
    "global": ("admin", "create-invite"),
    "channel": ("admin", "post", "read"),
    "reporting": ("admin", "assign", "delete", "update", "create", "read"),
    "broadcast": ("create",),
})


class HierarchyTable:
    """Immutable namespace -> ordered actions table."""

    def __init__(self, hierarchies: Mapping[str, Sequence[str]]):
        frozen = {}
        for namespace, actions in hierarchies.items():
            actions = tuple(actions)
            if len(set(actions)) != len(actions):
                raise ValueError(f"Duplicate action in hierarchy for '{namespace}'")
            frozen[namespace] = actions
        self._hierarchies = MappingProxyType(frozen)

    @classmethod
    def default(cls) -> "HierarchyTable":
        return cls(ROLE_HIERARCHIES)

    def rank(self, namespace: str, action: str) -> Optional[int]:
        """Position of ``action`` in its namespace; lower is more privileged."""
        actions = self._hierarchies.get(namespace)
        if actions is None:
            return None
        try:
            return actions.index(action)
        except ValueError:
            return None

    def actions(self, namespace: str) -> Tuple[str, ...]:
        return self._hierarchies.get(namespace, ())

    def namespaces(self) -> Tuple[str, ...]:
        return tuple(self._hierarchies)

    def items(self) -> Iterator[Tuple[str, Tuple[str, ...]]]:
        return iter(self._hierarchies.items())

    def __contains__(self, namespace: object) -> bool:
        return namespace in self._hierarchies

    def __repr__(self) -> str:
        return f"HierarchyTable({dict(self._hierarchies)!r})"
