from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from conciliapp.records import normalize_identity


class Role(str, Enum):
    SELLER = "seller"
    ANALYST = "analyst"
    ADMIN = "admin"

    @classmethod
    def parse(cls, raw: str | None) -> "Role | None":
        value = str(raw or "").strip().lower()
        aliases = {"reviewer": cls.ANALYST, "analista": cls.ANALYST, "vendedor": cls.SELLER}
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class Actor:
    identity: str
    role: Role

    @classmethod
    def of(cls, identity: str, role: Role | str) -> "Actor":
        parsed = role if isinstance(role, Role) else Role.parse(role)
        return cls(identity=normalize_identity(identity), role=parsed or Role.SELLER)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def can_review(self) -> bool:
        return self.role in {Role.ANALYST, Role.ADMIN}


def resolve_actor(identity: str, claimed_role: str | None, directory: object | None = None) -> Actor:
    """Build the acting identity.

    An explicit role claim wins. Without one, the directory decides: admins
    first, then rostered reviewers, everyone else is a seller.
    """
    role = Role.parse(claimed_role)
    if role is None and directory is not None:
        if directory.is_admin(identity):  # type: ignore[attr-defined]
            role = Role.ADMIN
        elif directory.reviewer(identity) is not None:  # type: ignore[attr-defined]
            role = Role.ANALYST
    return Actor.of(identity, role or Role.SELLER)
