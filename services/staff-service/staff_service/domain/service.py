"""Staff provisioning service orchestrating authorization, identity creation, and profile persistence."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from .contracts import CreateStaffInput
from .errors import ForbiddenError, NotFoundError, ProfilePersistenceError, RateLimitedError
from .staff import AdminProfile, ProvisionedStaff, StaffIdentity, StaffProfile
from ..repository import EVENT_ORPHANED, EVENT_PROVISIONED, EVENT_RECONCILED, AuditLog, AuditLogRecord

logger = logging.getLogger(__name__)


class TenantDatastore(Protocol):
    def get_profile_by_email(self, email: str) -> AdminProfile | None: ...

    def insert_profile(self, profile: StaffProfile) -> None: ...

    def upsert_profile(self, profile: StaffProfile) -> None: ...


class IdentityProvider(Protocol):
    def create_user(self, email: str) -> StaffIdentity: ...


class RateLimiter(Protocol):
    def allow(self, key: str) -> bool: ...

    def retry_after(self, key: str) -> int: ...


class StaffProvisioningService:
    """Provision staff accounts on behalf of a hotel administrator.

    Each call runs ``authorize -> create identity -> persist profile`` strictly
    in order and stops at the first failure. An identity created before a
    failed profile write is left in place and reported, never deleted here.
    """

    def __init__(
        self,
        datastore: TenantDatastore,
        identity_provider: IdentityProvider,
        audit_log: AuditLog,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Store the collaborators used by the provisioning pipeline."""
        self._datastore = datastore
        self._identity_provider = identity_provider
        self._audit_log = audit_log
        self._rate_limiter = rate_limiter

    def create_staff(self, payload: CreateStaffInput) -> ProvisionedStaff:
        """Create the identity and profile for a new staff member in the admin's hotel."""
        admin = self.authorize_admin(payload.admin_email)
        self._check_rate(admin)

        identity = self._identity_provider.create_user(payload.email)

        profile = StaffProfile(
            user_id=identity.user_id,
            email=payload.email,
            role=payload.role,
            full_name=payload.full_name,
            hotel_id=admin.hotel_id,
        )
        try:
            self._datastore.insert_profile(profile)
        except ProfilePersistenceError as exc:
            exc.auth_user_id = identity.user_id
            self._audit(
                EVENT_ORPHANED,
                actor=admin.email,
                profile=profile,
                metadata={**profile.to_row(), "reason": exc.detail or exc.error},
            )
            raise

        self._audit(EVENT_PROVISIONED, actor=admin.email, profile=profile, metadata={"role": profile.role})
        logger.info(
            "provisioned staff user %s in hotel %s for %s", identity.user_id, admin.hotel_id, admin.email
        )
        return ProvisionedStaff(user_id=identity.user_id, hotel_id=admin.hotel_id)

    def authorize_admin(self, admin_email: str) -> AdminProfile:
        """Return the caller's profile when it may provision staff."""
        admin = self._datastore.get_profile_by_email(admin_email)
        if admin is None:
            raise NotFoundError("Forbidden: Not an admin")
        if not admin.can_provision_staff:
            raise ForbiddenError("Forbidden: Not an admin")
        return admin

    def _check_rate(self, admin: AdminProfile) -> None:
        # keyed on the verified admin, never on unauthenticated request input
        if self._rate_limiter is None:
            return
        key = f"create-staff:{admin.email.lower()}"
        if not self._rate_limiter.allow(key):
            raise RateLimitedError(retry_after=self._rate_limiter.retry_after(key))

    def list_orphaned_identities(self, limit: int = 50) -> list[AuditLogRecord]:
        """Identities created without a profile row that still await reconciliation."""
        return self._audit_log.list_orphaned_identities(limit)

    def reconcile_orphan(self, user_id: str, *, actor: str | None = None) -> StaffProfile:
        """Complete the missing profile write for an orphaned identity.

        The write is an upsert keyed on the identity id, so running it again
        for an already reconciled identity leaves the row unchanged.

        Parameters
        ----------
        user_id:
            Identity-provider id reported as ``auth_user_id`` by the failed request.
        actor:
            Operator performing the reconciliation, recorded in the audit trail.
        """
        record = self._audit_log.find_orphan(user_id)
        if record is None:
            raise NotFoundError("orphaned identity not found", user_id)

        profile = self._profile_from_record(record)
        self._datastore.upsert_profile(profile)
        self._audit(EVENT_RECONCILED, actor=actor, profile=profile, metadata={"orphan_audit_id": record.audit_id})
        logger.info("reconciled orphaned identity %s in hotel %s", profile.user_id, profile.hotel_id)
        return profile

    def _profile_from_record(self, record: AuditLogRecord) -> StaffProfile:
        data = record.metadata
        return StaffProfile(
            user_id=record.user_id or data["id"],
            email=data["email"],
            role=data["role"],
            full_name=data.get("full_name"),
            hotel_id=record.hotel_id,
        )

    def _audit(
        self,
        event_type: str,
        *,
        actor: str | None,
        profile: StaffProfile,
        metadata: dict[str, Any],
    ) -> None:
        try:
            self._audit_log.write_audit_event(
                event_type=event_type,
                actor=actor,
                hotel_id=profile.hotel_id,
                user_id=profile.user_id,
                metadata=metadata,
            )
        except Exception:
            logger.exception("failed to record %s audit event for %s", event_type, profile.user_id)
