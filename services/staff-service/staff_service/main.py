"""FastAPI application wiring for the staff provisioning service."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from contextlib import asynccontextmanager, contextmanager
from typing import Iterator

import requests
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from psycopg_pool import ConnectionPool

from .api.routes import RateLimiter, build_rate_limiter, register_error_handlers, router
from .clients.credentials import ServiceRoleCredential
from .clients.datastore import TenantDatastoreClient
from .clients.identity import IdentityProviderClient
from .config import Settings, get_settings
from .domain.errors import StaffProvisioningError
from .domain.service import StaffProvisioningService
from .repository import AuditLog, AuditRepository, LoggingAuditLog

logger = logging.getLogger(__name__)


def build_service(
    settings: Settings,
    session: requests.Session,
    audit_log: AuditLog,
    rate_limiter: RateLimiter | None = None,
) -> StaffProvisioningService | None:
    """Construct the provisioning service, or ``None`` when required configuration is absent."""
    if settings.missing_required:
        logger.error(
            "missing environment variables %s; every provisioning request will fail",
            ", ".join(settings.missing_required),
        )
        return None

    credential = ServiceRoleCredential(settings.supabase_service_role_key)
    datastore = TenantDatastoreClient(
        settings.supabase_url,
        credential,
        table=settings.profiles_table,
        session=session,
        timeout=settings.http_timeout_seconds,
    )
    identity_provider = IdentityProviderClient(
        settings.supabase_url,
        credential,
        session=session,
        timeout=settings.http_timeout_seconds,
    )
    return StaffProvisioningService(datastore, identity_provider, audit_log, rate_limiter)


def open_audit_log(settings: Settings) -> tuple[AuditLog, ConnectionPool | None]:
    """Return the Postgres audit repository when configured, else the logging sink."""
    if not settings.audit_database_url:
        return LoggingAuditLog(), None
    pool = ConnectionPool(settings.audit_database_url, open=False)
    pool.open()
    repository = AuditRepository(pool)
    try:
        repository.ensure_schema()
    except Exception:
        logger.exception("could not prepare the audit table; audit writes may fail")
    return repository, pool


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialise shared resources (HTTP session, audit pool, service) for the app lifecycle."""
    settings: Settings = app.state.settings
    audit_log, pool = open_audit_log(settings)
    session = requests.Session()
    rate_limiter = build_rate_limiter(settings)
    app.state.missing_config = settings.missing_required
    app.state.rate_limiter = rate_limiter
    app.state.staff_service = build_service(settings, session, audit_log, rate_limiter)
    try:
        yield
    finally:
        session.close()
        if pool is not None:
            pool.close()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=600,
    )

    @app.get("/healthz", tags=["health"])
    def healthz(request: Request) -> dict[str, object]:
        """Return a readiness indicator; ``configured`` is false when requests will fail."""
        return {"status": "ok", "configured": getattr(request.app.state, "staff_service", None) is not None}

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(router)
    register_error_handlers(app)
    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn on the configured host and port."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.http_host, port=settings.http_port)


@contextmanager
def _operator_service(settings: Settings) -> Iterator[StaffProvisioningService | None]:
    audit_log, pool = open_audit_log(settings)
    session = requests.Session()
    try:
        yield build_service(settings, session, audit_log)
    finally:
        session.close()
        if pool is not None:
            pool.close()


def reconcile(
    argv: list[str] | None = None,
    *,
    settings: Settings | None = None,
    service: StaffProvisioningService | None = None,
) -> int:
    """Operator entry point: list orphaned identities or complete their profile rows."""
    parser = argparse.ArgumentParser(
        prog="staff-service-reconcile",
        description="Inspect and repair identities created without a staff profile",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    list_parser = sub.add_parser("list", help="show orphaned identities awaiting reconciliation")
    list_parser.add_argument("--limit", type=int, default=50)
    fix_parser = sub.add_parser("reconcile", help="write the missing profile row for an identity")
    fix_parser.add_argument("user_id", help="auth_user_id reported by the failed request")
    fix_parser.add_argument(
        "--operator",
        default=os.environ.get("USER", "operator"),
        help="operator identifier recorded in the audit trail",
    )
    args = parser.parse_args(argv)

    if service is not None:
        return _run_reconcile_command(args, service)

    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")
    if not settings.audit_database_url:
        print("AUDIT_DATABASE_URL is not set; orphaned identities were only logged", file=sys.stderr)
        return 2
    with _operator_service(settings) as built:
        if built is None:
            print(
                f"missing environment variables: {', '.join(settings.missing_required)}",
                file=sys.stderr,
            )
            return 2
        return _run_reconcile_command(args, built)


def _run_reconcile_command(args: argparse.Namespace, service: StaffProvisioningService) -> int:
    if args.command == "list":
        orphans = service.list_orphaned_identities(args.limit)
        for record in orphans:
            print(
                "\t".join(
                    [
                        record.user_id or "-",
                        record.hotel_id or "-",
                        str(record.metadata.get("email", "-")),
                        record.created_at.isoformat(),
                        str(record.metadata.get("reason", "")),
                    ]
                )
            )
        print(f"{len(orphans)} orphaned identities", file=sys.stderr)
        return 0

    try:
        profile = service.reconcile_orphan(args.user_id, actor=args.operator)
    except StaffProvisioningError as exc:
        print(f"reconcile failed: {exc}", file=sys.stderr)
        return 1
    print(f"reconciled {profile.user_id} ({profile.email}) in hotel {profile.hotel_id or '-'}")
    return 0
