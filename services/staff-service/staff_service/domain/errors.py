"""Error taxonomy for staff provisioning.

Every failure carries the HTTP status that reflects who is at fault (4xx for
the caller, 5xx for this service or a collaborator) and renders the JSON body
returned at the request boundary.
"""

from __future__ import annotations

from typing import Any


class StaffProvisioningError(Exception):
    """Base exception for all staff provisioning failures.

    Attributes:
        status_code: HTTP status returned to the caller
        error: Short, caller-facing message
        detail: Optional underlying detail (collaborator message, missing fields)
    """

    status_code = 500
    code = "internal_error"

    def __init__(self, error: str, detail: str | None = None) -> None:
        self.error = error
        self.detail = detail
        super().__init__(f"{error}: {detail}" if detail else error)

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.detail:
            body["detail"] = self.detail
        return body


class ValidationError(StaffProvisioningError):
    """Request payload is missing required fields or is malformed."""

    status_code = 400
    code = "validation_error"


class AuthenticationError(StaffProvisioningError):
    """Caller session token is missing, invalid, or belongs to someone else."""

    status_code = 401
    code = "authentication_error"


class ForbiddenError(StaffProvisioningError):
    """Caller exists but is not allowed to provision staff."""

    status_code = 403
    code = "forbidden"


class NotFoundError(StaffProvisioningError):
    """Referenced record does not exist.

    An unknown admin is reported as 403 so that the response does not reveal
    whether a profile exists for that email.
    """

    status_code = 403
    code = "not_found"

    def to_body(self) -> dict[str, Any]:
        return {"error": self.error}


class RateLimitedError(StaffProvisioningError):
    """Caller exceeded the provisioning rate for their admin account."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, error: str = "rate limited", retry_after: int = 1) -> None:
        super().__init__(error)
        self.retry_after = retry_after


class AuthorizationLookupError(StaffProvisioningError):
    """Datastore failed while looking up the admin profile."""

    status_code = 500
    code = "authorization_lookup_error"


class IdentityCreationError(StaffProvisioningError):
    """Identity provider rejected the new user (duplicate, invalid address, quota)."""

    status_code = 400
    code = "identity_creation_error"


class IdentityProviderUnavailableError(StaffProvisioningError):
    """Identity provider could not be reached; whether a user was created is unknown."""

    status_code = 502
    code = "identity_provider_unavailable"


class InvariantViolationError(StaffProvisioningError):
    """A collaborator reported success but returned an unusable shape."""

    status_code = 500
    code = "invariant_violation"


class ProfilePersistenceError(StaffProvisioningError):
    """Profile insert failed after the identity was already created.

    Attributes:
        auth_user_id: Identifier of the orphaned identity, surfaced so that an
            operator can reconcile it
    """

    status_code = 500
    code = "profile_persistence_error"

    def __init__(self, error: str, detail: str | None = None, auth_user_id: str | None = None) -> None:
        super().__init__(error, detail)
        self.auth_user_id = auth_user_id

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        if self.auth_user_id:
            body["auth_user_id"] = self.auth_user_id
        return body


class ConfigurationError(StaffProvisioningError):
    """Required collaborator configuration is absent."""

    status_code = 500
    code = "configuration_error"
