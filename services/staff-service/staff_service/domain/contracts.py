"""Domain-level request contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ValidationError


@dataclass(slots=True)
class CreateStaffInput:
    """Validated inputs required to provision a staff member for an admin's hotel."""

    admin_email: str
    email: str
    role: str
    full_name: str | None = None

    @classmethod
    def from_fields(
        cls,
        *,
        admin_email: str | None,
        email: str | None,
        role: str | None,
        full_name: str | None = None,
    ) -> "CreateStaffInput":
        """Build the contract, rejecting absent or blank required fields."""
        provided = {"admin_email": admin_email, "email": email, "role": role}
        missing = [name for name, value in provided.items() if not (value and value.strip())]
        if missing:
            raise ValidationError("Missing required fields", ", ".join(missing))
        return cls(
            admin_email=admin_email.strip(),
            email=email.strip(),
            role=role.strip(),
            full_name=full_name.strip() if full_name and full_name.strip() else None,
        )
