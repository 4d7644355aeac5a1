from __future__ import annotations

from dataclasses import dataclass

PRIVILEGED_ROLES = frozenset({"admin", "super_admin"})


@dataclass(slots=True)
class AdminProfile:
    """Tenant-scoped profile of the caller asking to provision staff."""

    email: str
    role: str | None
    hotel_id: str | None = None

    @property
    def can_provision_staff(self) -> bool:
        return self.role in PRIVILEGED_ROLES


@dataclass(slots=True)
class StaffIdentity:
    """Identity-provider record created for the invited staff member."""

    user_id: str
    email: str | None = None


@dataclass(slots=True)
class StaffProfile:
    """Profile row written to the tenant datastore for a new staff member."""

    user_id: str
    email: str
    role: str
    full_name: str | None
    hotel_id: str | None

    def to_row(self) -> dict[str, str | None]:
        """Column mapping used when inserting into the profiles table."""
        return {
            "id": self.user_id,
            "email": self.email,
            "role": self.role,
            "full_name": self.full_name,
            "hotel_id": self.hotel_id,
        }


@dataclass(slots=True)
class ProvisionedStaff:
    """Outcome of a successful provisioning run."""

    user_id: str
    hotel_id: str | None
