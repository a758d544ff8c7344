"""Hierarchy-aware implication between role keys.

These checks are pure: they work on a role set the caller already holds and
never touch the role store or the cache.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Set

from gatekeeper.permissions.hierarchy import HierarchyTable
from gatekeeper.permissions.role_key import RoleKey, RoleKeyLike


class ImplicationEngine:
    """Decides whether a held role grants a required one."""

    def __init__(self, table: Optional[HierarchyTable] = None):
        self.table = table or HierarchyTable.default()

    def rank(self, namespace: str, action: str) -> Optional[int]:
        return self.table.rank(namespace, action)

    def implies(self, held: RoleKeyLike, required: RoleKeyLike) -> bool:
        """True if holding ``held`` grants ``required``.

        Same namespace and exactly the same subject are mandatory; a role
        without a subject never implies one with a subject, or the reverse.
        """
        held = RoleKey.coerce(held)
        required = RoleKey.coerce(required)

        if held == required:
            return True
        if not held.same_scope(required):
            return False
        if held.namespace not in self.table:
            return False

        held_rank = self.table.rank(held.namespace, held.action)
        required_rank = self.table.rank(required.namespace, required.action)
        if held_rank is None or required_rank is None:
            return False
        return held_rank <= required_rank

    def expand(self, role: RoleKeyLike) -> List[RoleKey]:
        """The role itself plus every lower-privilege role in its scope.

        >>> [str(r) for r in ImplicationEngine().expand("channel:1:admin")]
        ['channel:1:admin', 'channel:1:post', 'channel:1:read']
        """
        role = RoleKey.coerce(role)
        current = self.table.rank(role.namespace, role.action)
        if current is None:
            return [role]
        return [
            role.with_action(action)
            for action in self.table.actions(role.namespace)[current:]
        ]

    def expand_all(self, held: Iterable[RoleKeyLike]) -> Set[RoleKey]:
        implied: Set[RoleKey] = set()
        for role in held:
            implied.update(self.expand(role))
        return implied

    def has_permission(self, held: Iterable[RoleKeyLike], required: RoleKeyLike) -> bool:
        required = RoleKey.coerce(required)
        return any(self.implies(role, required) for role in held)

    def has_any_permission(
        self, held: Iterable[RoleKeyLike], required_alternatives: Iterable[RoleKeyLike]
    ) -> bool:
        held = [RoleKey.coerce(role) for role in held]
        return any(
            self.has_permission(held, required) for required in required_alternatives
        )
