from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    Carried through the request via FastAPI's dependency system.  The
    enrollment services trust ``user_id`` as the learner id.
    """

    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_admin(self) -> bool:
        return "admin" in self.roles
