"""Service-role credential handed to the collaborator clients."""

from __future__ import annotations


class ServiceRoleCredential:
    """Capability that bypasses per-row access policy on the tenant datastore.

    Only the collaborator clients built in :func:`staff_service.main.build_service`
    hold an instance; it is never accepted from, or echoed back to, a caller.
    """

    __slots__ = ("_key",)

    def __init__(self, key: str) -> None:
        if not key:
            raise ValueError("service role key must not be empty")
        self._key = key

    def headers(self) -> dict[str, str]:
        """Request headers authenticating as the service role."""
        return {"apikey": self._key, "Authorization": f"Bearer {self._key}"}

    def __repr__(self) -> str:
        return "ServiceRoleCredential(key=***)"

    __str__ = __repr__
