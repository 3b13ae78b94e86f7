"""Capability-based access control.

A verified identity is turned into a `Principal` exactly once: its role
grants a default capability set and sub-admins receive extra capabilities
through explicit permission claims. Governance operations then check a
single capability instead of repeating role comparisons per route.

- ADMIN: every capability
- SUB_ADMIN: only the capabilities granted in the token
- FACILITATOR: marks attendance, plays lessons
- LEARNER: plays lessons
"""

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID


class UserRole(str, Enum):
    """Platform roles."""

    LEARNER = "learner"
    FACILITATOR = "facilitator"
    SUB_ADMIN = "sub_admin"
    ADMIN = "admin"


class Capability(str, Enum):
    """Operations a principal may perform."""

    PLAY_LESSONS = "play_lessons"
    MANAGE_PROGRESS = "manage_progress"  # grant pause, reset, lock
    MANAGE_ACCESS_CODES = "manage_access_codes"
    MARK_ATTENDANCE = "mark_attendance"


ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.LEARNER: frozenset({Capability.PLAY_LESSONS}),
    UserRole.FACILITATOR: frozenset(
        {Capability.PLAY_LESSONS, Capability.MARK_ATTENDANCE}
    ),
    UserRole.SUB_ADMIN: frozenset(),
    UserRole.ADMIN: frozenset(Capability),
}


def parse_role(role: UserRole | str) -> UserRole:
    """Parse a role claim, treating unknown values as LEARNER."""
    if isinstance(role, UserRole):
        return role
    try:
        return UserRole(role)
    except ValueError:
        return UserRole.LEARNER


def capabilities_for(
    role: UserRole | str, granted: list[str] | None = None
) -> frozenset[Capability]:
    """Capability set of a role plus explicit grants.

    Unknown permission strings are ignored rather than rejected, so a token
    minted by a newer identity service still works here.

    Examples:
        >>> Capability.MANAGE_PROGRESS in capabilities_for("admin")
        True
        >>> capabilities_for("sub_admin", ["manage_access_codes"])
        frozenset({<Capability.MANAGE_ACCESS_CODES: 'manage_access_codes'>})
    """
    extra = {c for c in Capability if c.value in set(granted or [])}
    return ROLE_CAPABILITIES[parse_role(role)] | frozenset(extra)


@dataclass(frozen=True)
class Principal:
    """The verified caller of an engine operation."""

    user_id: UUID
    role: UserRole = UserRole.LEARNER
    capabilities: frozenset[Capability] = field(default_factory=frozenset)

    @classmethod
    def from_claims(
        cls, user_id: UUID, role: str, permissions: list[str] | None = None
    ) -> "Principal":
        parsed = parse_role(role)
        return cls(
            user_id=user_id,
            role=parsed,
            capabilities=capabilities_for(parsed, permissions),
        )

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities
