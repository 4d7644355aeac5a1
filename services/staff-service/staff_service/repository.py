"""Audit trail storage for staff provisioning."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

logger = logging.getLogger(__name__)

EVENT_PROVISIONED = "staff.provisioned"
EVENT_ORPHANED = "staff.identity_orphaned"
EVENT_RECONCILED = "staff.orphan_reconciled"

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS staff_provisioning_audit (
    audit_id BIGSERIAL PRIMARY KEY,
    event_type TEXT NOT NULL,
    actor TEXT,
    hotel_id TEXT,
    user_id TEXT,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS staff_provisioning_audit_user_idx
    ON staff_provisioning_audit (user_id, event_type);
"""

_SELECT_COLUMNS = "audit_id, event_type, actor, hotel_id, user_id, metadata, created_at"


@dataclass(slots=True)
class AuditLogRecord:
    """Row projection for items in staff_provisioning_audit."""

    audit_id: int
    event_type: str
    actor: str | None
    hotel_id: str | None
    user_id: str | None
    metadata: dict[str, Any]
    created_at: datetime


class AuditLog(Protocol):
    def write_audit_event(
        self,
        *,
        event_type: str,
        actor: str | None,
        hotel_id: str | None,
        user_id: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...

    def list_orphaned_identities(self, limit: int = 50) -> list[AuditLogRecord]: ...

    def find_orphan(self, user_id: str) -> AuditLogRecord | None: ...


class AuditRepository:
    """Postgres-backed audit log of provisioning outcomes."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def ensure_schema(self) -> None:
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_SCHEMA_SQL)
                conn.commit()

    def write_audit_event(
        self,
        *,
        event_type: str,
        actor: str | None,
        hotel_id: str | None,
        user_id: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing provisioning activity."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO staff_provisioning_audit (event_type, actor, hotel_id, user_id, metadata)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (event_type, actor, hotel_id, user_id, Json(metadata or {})),
                )
                conn.commit()

    def list_orphaned_identities(self, limit: int = 50) -> list[AuditLogRecord]:
        """Return orphaned identities that have not been reconciled yet, newest first."""
        limit = max(1, min(limit, 500))
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_SELECT_COLUMNS}
                    FROM staff_provisioning_audit AS orphan
                    WHERE orphan.event_type = %s
                      AND NOT EXISTS (
                          SELECT 1 FROM staff_provisioning_audit AS done
                          WHERE done.event_type = %s AND done.user_id = orphan.user_id
                      )
                    ORDER BY orphan.created_at DESC, orphan.audit_id DESC
                    LIMIT %s
                    """,
                    (EVENT_ORPHANED, EVENT_RECONCILED, limit),
                )
                return [self._map_record(row) for row in cur.fetchall()]

    def find_orphan(self, user_id: str) -> AuditLogRecord | None:
        """Fetch the most recent orphan event for an identity id or return ``None``."""
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_SELECT_COLUMNS}
                    FROM staff_provisioning_audit
                    WHERE event_type = %s AND user_id = %s
                    ORDER BY created_at DESC, audit_id DESC
                    LIMIT 1
                    """,
                    (EVENT_ORPHANED, user_id),
                )
                row = cur.fetchone()
                if not row:
                    return None
        return self._map_record(row)

    def _map_record(self, row: tuple) -> AuditLogRecord:
        return AuditLogRecord(
            audit_id=row[0],
            event_type=row[1],
            actor=row[2],
            hotel_id=row[3],
            user_id=row[4],
            metadata=row[5] or {},
            created_at=row[6],
        )


class LoggingAuditLog:
    """Audit sink used when no audit database is configured.

    Events only reach the log stream, so orphans cannot be listed or
    reconciled through the service; operators rely on the logged ids instead.
    """

    def write_audit_event(
        self,
        *,
        event_type: str,
        actor: str | None,
        hotel_id: str | None,
        user_id: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        logger.info(
            "audit %s actor=%s hotel_id=%s user_id=%s metadata=%s",
            event_type,
            actor,
            hotel_id,
            user_id,
            metadata or {},
        )

    def list_orphaned_identities(self, limit: int = 50) -> list[AuditLogRecord]:
        return []

    def find_orphan(self, user_id: str) -> AuditLogRecord | None:
        return None
