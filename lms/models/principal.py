from __future__ import annotations

from dataclasses import dataclass

STAFF_ROLES = frozenset({"instructor", "admin"})


@dataclass(frozen=True, slots=True)
class Principal:
    """Caller identity taken from a verified bearer token.

    subject is the token's ``sub`` claim; for learners it is their
    student id.  Instructors and admins act on other students' records
    (bulk enroll, course rosters) and are recognised by role.
    """

    subject: str
    roles: frozenset[str]

    def has_any_role(self, roles: frozenset[str] | set[str]) -> bool:
        return not self.roles.isdisjoint(roles)

    @property
    def is_staff(self) -> bool:
        return self.has_any_role(STAFF_ROLES)
