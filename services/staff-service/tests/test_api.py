from __future__ import annotations

import time
from datetime import datetime, timezone

import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from staff_service.api import routes
from staff_service.config import Settings
from staff_service.domain.errors import (
    AuthorizationLookupError,
    IdentityCreationError,
    ProfilePersistenceError,
)
from staff_service.domain.service import StaffProvisioningService
from staff_service.domain.staff import AdminProfile, StaffIdentity, StaffProfile
from staff_service.main import create_app
from staff_service.repository import EVENT_ORPHANED, EVENT_PROVISIONED, AuditLogRecord
from staff_service.security.rate_limiter import SlidingWindowRateLimiter

JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"


class FakeDatastore:
    """In-memory tenant datastore mimicking the profiles table."""

    def __init__(self, profiles: dict[str, AdminProfile] | None = None) -> None:
        self.profiles = dict(profiles or {})
        self.rows: dict[str, StaffProfile] = {}
        self.lookups: list[str] = []
        self.inserts: list[StaffProfile] = []
        self.upserts: list[StaffProfile] = []
        self.lookup_error: Exception | None = None
        self.insert_error: Exception | None = None

    def get_profile_by_email(self, email: str) -> AdminProfile | None:
        self.lookups.append(email)
        if self.lookup_error:
            raise self.lookup_error
        return self.profiles.get(email)

    def insert_profile(self, profile: StaffProfile) -> None:
        self.inserts.append(profile)
        if self.insert_error:
            raise self.insert_error
        self.rows[profile.user_id] = profile

    def upsert_profile(self, profile: StaffProfile) -> None:
        self.upserts.append(profile)
        self.rows[profile.user_id] = profile


class FakeIdentityProvider:
    """Identity provider handing out predictable ids and rejecting duplicate emails."""

    def __init__(self, ids: list[str] | None = None) -> None:
        self._ids = list(ids or [])
        self._seq = 0
        self.registered: dict[str, str] = {}
        self.calls: list[str] = []

    def create_user(self, email: str) -> StaffIdentity:
        self.calls.append(email)
        if email in self.registered:
            raise IdentityCreationError("A user with this email address has already been registered")
        if self._ids:
            user_id = self._ids.pop(0)
        else:
            self._seq += 1
            user_id = f"u-{self._seq}"
        self.registered[email] = user_id
        return StaffIdentity(user_id=user_id, email=email)


class FakeAuditLog:
    def __init__(self) -> None:
        self.events: list[AuditLogRecord] = []

    def write_audit_event(self, *, event_type, actor, hotel_id, user_id, metadata=None) -> None:
        self.events.append(
            AuditLogRecord(
                audit_id=len(self.events) + 1,
                event_type=event_type,
                actor=actor,
                hotel_id=hotel_id,
                user_id=user_id,
                metadata=metadata or {},
                created_at=datetime.now(timezone.utc),
            )
        )

    def list_orphaned_identities(self, limit: int = 50) -> list[AuditLogRecord]:
        return []

    def find_orphan(self, user_id: str) -> AuditLogRecord | None:
        return None


def _settings(**overrides) -> Settings:
    values = dict(
        supabase_url="https://project.supabase.co",
        supabase_service_role_key="service-role-key",
        supabase_jwt_secret=None,
        audit_database_url=None,
        rate_limit_backend="memory",
        rate_limit_requests=100,
        rate_limit_window_seconds=60,
    )
    values.update(overrides)
    return Settings(**values)


def _build_client(service: StaffProvisioningService | None, settings: Settings):
    app = FastAPI()
    app.include_router(routes.router)
    routes.register_error_handlers(app)
    app.state.settings = settings
    app.state.staff_service = service
    app.state.missing_config = settings.missing_required
    return TestClient(app)


@pytest.fixture
def datastore() -> FakeDatastore:
    return FakeDatastore(
        {
            "admin@x.com": AdminProfile(email="admin@x.com", role="admin", hotel_id="H1"),
            "owner@x.com": AdminProfile(email="owner@x.com", role="super_admin", hotel_id=None),
            "staff@x.com": AdminProfile(email="staff@x.com", role="staff", hotel_id="H1"),
        }
    )


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider(ids=["u-456"])


@pytest.fixture
def audit_log() -> FakeAuditLog:
    return FakeAuditLog()


@pytest.fixture
def api_client(datastore, identity_provider, audit_log):
    """Provide a FastAPI test client with isolated state."""
    service = StaffProvisioningService(datastore, identity_provider, audit_log)
    with _build_client(service, _settings()) as client:
        yield client


NEW_STAFF = {"admin_email": "admin@x.com", "email": "new@x.com", "role": "staff", "full_name": "Jane"}


def test_create_staff_success(api_client, datastore, audit_log):
    response = api_client.post("/create-staff", json=NEW_STAFF)

    assert response.status_code == 200
    assert response.json() == {"success": True, "user_id": "u-456", "hotel_id": "H1"}
    assert datastore.inserts == [
        StaffProfile(user_id="u-456", email="new@x.com", role="staff", full_name="Jane", hotel_id="H1")
    ]
    assert datastore.inserts[0].to_row() == {
        "id": "u-456",
        "email": "new@x.com",
        "role": "staff",
        "full_name": "Jane",
        "hotel_id": "H1",
    }
    assert [event.event_type for event in audit_log.events] == [EVENT_PROVISIONED]


@pytest.mark.parametrize(
    "missing",
    ["admin_email", "email", "role"],
)
def test_missing_required_field_is_rejected_without_remote_calls(
    api_client, datastore, identity_provider, missing
):
    body = {key: value for key, value in NEW_STAFF.items() if key != missing}

    response = api_client.post("/create-staff", json=body)

    assert response.status_code == 400
    assert response.json()["error"] == "Missing required fields"
    assert missing in response.json()["detail"]
    assert datastore.lookups == []
    assert identity_provider.calls == []


@pytest.mark.parametrize("body", [{**NEW_STAFF, "role": "   "}, {**NEW_STAFF, "email": None}, {}])
def test_blank_or_null_fields_count_as_missing(api_client, datastore, body):
    response = api_client.post("/create-staff", json=body)
    assert response.status_code == 400
    assert datastore.lookups == []


def test_malformed_body_is_a_validation_error(api_client, datastore, identity_provider):
    not_json = api_client.post(
        "/create-staff", content="not json", headers={"Content-Type": "application/json"}
    )
    wrong_type = api_client.post("/create-staff", json={**NEW_STAFF, "role": 5})

    assert not_json.status_code == 400
    assert wrong_type.status_code == 400
    assert wrong_type.json()["error"] == "Invalid request body"
    assert "role" in wrong_type.json()["detail"]
    assert datastore.lookups == []
    assert identity_provider.calls == []


def test_unknown_admin_is_forbidden(api_client, datastore, identity_provider):
    response = api_client.post("/create-staff", json={**NEW_STAFF, "admin_email": "ghost@x.com"})

    assert response.status_code == 403
    assert set(response.json()) == {"error"}
    assert identity_provider.calls == []
    assert datastore.inserts == []


def test_non_admin_role_is_forbidden(api_client, identity_provider):
    response = api_client.post("/create-staff", json={**NEW_STAFF, "admin_email": "staff@x.com"})

    assert response.status_code == 403
    assert response.json() == {"error": "Forbidden: Not an admin"}
    assert identity_provider.calls == []


def test_super_admin_without_hotel_may_provision(api_client, datastore):
    response = api_client.post("/create-staff", json={**NEW_STAFF, "admin_email": "owner@x.com"})

    assert response.status_code == 200
    assert response.json()["hotel_id"] is None
    assert datastore.inserts[0].hotel_id is None


def test_request_body_cannot_override_hotel(api_client, datastore):
    response = api_client.post("/create-staff", json={**NEW_STAFF, "hotel_id": "H2"})

    assert response.status_code == 200
    assert response.json()["hotel_id"] == "H1"
    assert datastore.inserts[0].hotel_id == "H1"


def test_lookup_failure_is_a_server_error(api_client, datastore, identity_provider):
    datastore.lookup_error = AuthorizationLookupError("failed to verify admin", "connection reset")

    response = api_client.post("/create-staff", json=NEW_STAFF)

    assert response.status_code == 500
    assert response.json() == {"error": "failed to verify admin", "detail": "connection reset"}
    assert identity_provider.calls == []


def test_identity_rejection_skips_profile_insert(api_client, datastore, identity_provider):
    identity_provider.registered["new@x.com"] = "u-existing"

    response = api_client.post("/create-staff", json=NEW_STAFF)

    assert response.status_code == 400
    assert "already been registered" in response.json()["error"]
    assert datastore.inserts == []


def test_profile_failure_reports_orphaned_identity(datastore, audit_log):
    identity_provider = FakeIdentityProvider(ids=["u-123"])
    datastore.insert_error = ProfilePersistenceError("failed to create staff profile", "duplicate key value")
    service = StaffProvisioningService(datastore, identity_provider, audit_log)

    with _build_client(service, _settings()) as client:
        response = client.post("/create-staff", json=NEW_STAFF)

    assert response.status_code == 500
    assert response.json() == {
        "error": "failed to create staff profile",
        "detail": "duplicate key value",
        "auth_user_id": "u-123",
    }
    assert identity_provider.registered == {"new@x.com": "u-123"}
    orphan_events = [event for event in audit_log.events if event.event_type == EVENT_ORPHANED]
    assert len(orphan_events) == 1
    assert orphan_events[0].user_id == "u-123"
    assert orphan_events[0].metadata["hotel_id"] == "H1"


def test_repeated_request_is_not_deduplicated(api_client, identity_provider, datastore):
    first = api_client.post("/create-staff", json=NEW_STAFF)
    second = api_client.post("/create-staff", json=NEW_STAFF)

    assert first.status_code == 200
    assert second.status_code == 400
    assert identity_provider.calls == ["new@x.com", "new@x.com"]
    assert len(datastore.inserts) == 1


def test_rate_limit_per_admin(datastore, identity_provider, audit_log):
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
    service = StaffProvisioningService(datastore, identity_provider, audit_log, rate_limiter=limiter)
    with _build_client(service, _settings()) as client:
        first = client.post("/create-staff", json={**NEW_STAFF, "email": "a@x.com"})
        second = client.post("/create-staff", json={**NEW_STAFF, "email": "b@x.com"})
        third = client.post("/create-staff", json={**NEW_STAFF, "email": "c@x.com"})
        other_admin = client.post(
            "/create-staff", json={**NEW_STAFF, "admin_email": "owner@x.com", "email": "d@x.com"}
        )

    assert first.status_code == 200
    assert second.status_code == 200
    assert third.status_code == 429
    assert third.json() == {"error": "rate limited"}
    assert int(third.headers["Retry-After"]) >= 1
    assert other_admin.status_code == 200
    assert identity_provider.calls == ["a@x.com", "b@x.com", "d@x.com"]


def test_rejected_admins_leave_no_rate_limit_state(datastore, identity_provider, audit_log):
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
    service = StaffProvisioningService(datastore, identity_provider, audit_log, rate_limiter=limiter)
    with _build_client(service, _settings()) as client:
        responses = [
            client.post("/create-staff", json={**NEW_STAFF, "admin_email": f"ghost-{n}@x.com"})
            for n in range(200)
        ]
        not_admin = client.post("/create-staff", json={**NEW_STAFF, "admin_email": "staff@x.com"})

    assert {response.status_code for response in responses} == {403}
    assert not_admin.status_code == 403
    assert len(limiter) == 0
    assert identity_provider.calls == []


def _session_token(email: str, secret: str = JWT_SECRET, **claims) -> str:
    now = int(time.time())
    payload = {"sub": "admin-id", "email": email, "aud": "authenticated", "iat": now, "exp": now + 300}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def secured_client(datastore, identity_provider, audit_log):
    service = StaffProvisioningService(datastore, identity_provider, audit_log)
    with _build_client(service, _settings(supabase_jwt_secret=JWT_SECRET)) as client:
        yield client


def test_session_token_matching_admin_is_accepted(secured_client):
    token = _session_token("Admin@X.com")
    response = secured_client.post(
        "/create-staff", json=NEW_STAFF, headers={"Authorization": f"Bearer {token}"}
    )
    assert response.status_code == 200


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Basic abc"},
        {"Authorization": f"Bearer {_session_token('other@x.com')}"},
        {"Authorization": f"Bearer {_session_token('admin@x.com', secret='another-secret-that-is-long-enough!!')}"},
        {"Authorization": f"Bearer {_session_token('admin@x.com', exp=int(time.time()) - 10)}"},
    ],
)
def test_session_token_rejections(secured_client, datastore, identity_provider, headers):
    response = secured_client.post("/create-staff", json=NEW_STAFF, headers=headers)

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert datastore.lookups == []
    assert identity_provider.calls == []


def test_missing_configuration_fails_every_request():
    app = create_app(_settings(supabase_url=None, supabase_service_role_key=None))

    with TestClient(app) as client:
        liveness = client.get("/")
        health = client.get("/healthz")
        response = client.post("/create-staff", json=NEW_STAFF)

    assert liveness.status_code == 200
    assert liveness.text == "Staff provisioning service is running"
    assert health.json() == {"status": "ok", "configured": False}
    assert response.status_code == 500
    assert response.json()["error"] == "Server misconfigured"
    assert "SUPABASE_URL" in response.json()["detail"]
    assert "SUPABASE_SERVICE_ROLE_KEY" in response.json()["detail"]


def test_configured_app_wires_service():
    app = create_app(_settings())

    with TestClient(app) as client:
        health = client.get("/healthz")
        metrics = client.get("/metrics")

    assert health.json() == {"status": "ok", "configured": True}
    assert isinstance(app.state.staff_service, StaffProvisioningService)
    assert metrics.status_code == 200
    assert "staff_provisioning_requests" in metrics.text
