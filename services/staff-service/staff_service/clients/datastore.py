"""Tenant datastore client speaking PostgREST."""

from __future__ import annotations

from typing import Any

import requests

from ..domain.errors import AuthorizationLookupError, ProfilePersistenceError
from ..domain.staff import AdminProfile, StaffProfile
from ..metrics import UPSTREAM_LATENCY
from .credentials import ServiceRoleCredential
from .identity import provider_error_message


class TenantDatastoreClient:
    """Reads and writes the ``profiles`` table with the service-role credential."""

    def __init__(
        self,
        base_url: str,
        credential: ServiceRoleCredential,
        *,
        table: str = "profiles",
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._credential = credential
        self._table = table
        self._session = session or requests.Session()
        self._timeout = timeout

    @property
    def _table_url(self) -> str:
        return f"{self.base_url}/rest/v1/{self._table}"

    def get_profile_by_email(self, email: str) -> AdminProfile | None:
        """Return the profile whose email matches exactly, or ``None``."""
        try:
            with UPSTREAM_LATENCY.labels(operation="datastore.get_profile").time():
                resp = self._session.get(
                    self._table_url,
                    params={"select": "email,role,hotel_id", "email": f"eq.{email}", "limit": "1"},
                    headers={**self._credential.headers(), "Accept": "application/json"},
                    timeout=self._timeout,
                )
        except requests.RequestException as exc:
            raise AuthorizationLookupError("failed to verify admin", str(exc)) from exc

        if resp.status_code >= 400:
            raise AuthorizationLookupError("failed to verify admin", provider_error_message(resp))
        try:
            rows = resp.json()
        except ValueError as exc:
            raise AuthorizationLookupError("failed to verify admin", "response body is not JSON") from exc
        if not isinstance(rows, list):
            raise AuthorizationLookupError("failed to verify admin", "expected a list of rows")
        if not rows:
            return None

        row = rows[0]
        if not isinstance(row, dict):
            raise AuthorizationLookupError("failed to verify admin", "expected profile rows to be objects")
        hotel_id = row.get("hotel_id")
        return AdminProfile(
            email=row.get("email") or email,
            role=row.get("role"),
            hotel_id=str(hotel_id) if hotel_id is not None else None,
        )

    def insert_profile(self, profile: StaffProfile) -> None:
        """Insert a new staff profile row."""
        self._write(profile, {"Prefer": "return=minimal"}, params=None)

    def upsert_profile(self, profile: StaffProfile) -> None:
        """Insert or merge a staff profile row keyed on ``id``."""
        self._write(
            profile,
            {"Prefer": "resolution=merge-duplicates,return=minimal"},
            params={"on_conflict": "id"},
        )

    def _write(
        self,
        profile: StaffProfile,
        extra_headers: dict[str, str],
        params: dict[str, Any] | None,
    ) -> None:
        try:
            with UPSTREAM_LATENCY.labels(operation="datastore.write_profile").time():
                resp = self._session.post(
                    self._table_url,
                    json=profile.to_row(),
                    params=params,
                    headers={**self._credential.headers(), **extra_headers},
                    timeout=self._timeout,
                )
        except requests.RequestException as exc:
            raise ProfilePersistenceError(
                "failed to create staff profile", str(exc), auth_user_id=profile.user_id
            ) from exc

        if resp.status_code >= 400:
            raise ProfilePersistenceError(
                "failed to create staff profile",
                provider_error_message(resp),
                auth_user_id=profile.user_id,
            )
