"""Identity provider client for the GoTrue admin API."""

from __future__ import annotations

import logging

import requests

from ..domain.errors import (
    IdentityCreationError,
    IdentityProviderUnavailableError,
    InvariantViolationError,
)
from ..domain.staff import StaffIdentity
from ..metrics import UPSTREAM_LATENCY
from .credentials import ServiceRoleCredential

logger = logging.getLogger(__name__)

_ERROR_KEYS = ("msg", "message", "error_description", "error")


def provider_error_message(resp: requests.Response) -> str:
    """Extract the human readable message from a GoTrue or PostgREST error response."""
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in _ERROR_KEYS:
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    text = (resp.text or "").strip()
    return text or f"HTTP {resp.status_code}"


class IdentityProviderClient:
    """Creates invited users through ``POST /auth/v1/admin/users``.

    Usage:
        client = IdentityProviderClient("https://xyz.supabase.co", credential)
        identity = client.create_user("new@hotel.com")
    """

    def __init__(
        self,
        base_url: str,
        credential: ServiceRoleCredential,
        *,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._credential = credential
        self._session = session or requests.Session()
        self._timeout = timeout

    def create_user(self, email: str) -> StaffIdentity:
        """Create an unconfirmed user so the provider sends an invitation.

        Raises:
            IdentityCreationError: provider rejected the user
            IdentityProviderUnavailableError: provider unreachable or failing
            InvariantViolationError: success response without a usable id
        """
        url = f"{self.base_url}/auth/v1/admin/users"
        try:
            with UPSTREAM_LATENCY.labels(operation="identity.create_user").time():
                resp = self._session.post(
                    url,
                    json={"email": email, "email_confirm": False},
                    headers=self._credential.headers(),
                    timeout=self._timeout,
                )
        except requests.RequestException as exc:
            raise IdentityProviderUnavailableError("identity provider unavailable", str(exc)) from exc

        if resp.status_code >= 500:
            raise IdentityProviderUnavailableError(
                "identity provider unavailable", provider_error_message(resp)
            )
        if resp.status_code >= 400:
            raise IdentityCreationError(provider_error_message(resp))

        try:
            payload = resp.json()
        except ValueError as exc:
            raise InvariantViolationError(
                "identity provider returned an invalid response", "response body is not JSON"
            ) from exc

        # Some GoTrue versions wrap the user as {"user": {...}}.
        user = payload.get("user", payload) if isinstance(payload, dict) else None
        user_id = user.get("id") if isinstance(user, dict) else None
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvariantViolationError(
                "identity provider returned no user id", f"unexpected payload: {payload!r}"[:300]
            )
        logger.debug("identity created for %s", email)
        return StaffIdentity(user_id=user_id, email=user.get("email", email))
