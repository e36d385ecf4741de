from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    Passed explicitly into every service call; nothing in the engine
    reads the caller from request-global state.

        user_id: subject from JWT
        roles: platform roles (admin, learner)
    """

    user_id: str
    roles: frozenset[str] = frozenset({"learner"})

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_admin(self) -> bool:
        return "admin" in self.roles

    def can_act_for(self, learner_id: str) -> bool:
        """Owner-or-admin rule used by most enrollment operations."""
        return self.is_admin() or self.user_id == learner_id
