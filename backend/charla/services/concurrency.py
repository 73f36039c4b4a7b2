# Overview: Service-layer operations for concurrency; locking and retry helpers for multi-step writes.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Tenant

logger = logging.getLogger(__name__)

DEFAULT_RETRY_ON = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def lock_tenant_for_write(tenant_id: int) -> Tenant | None:
    """
    Per-tenant serialization point for read-then-insert sequences
    (daily sale ordinals).

    - Server databases: SELECT ... FOR UPDATE on the tenant row.
    - SQLite: BEGIN IMMEDIATE takes the database write lock up front, so
      the ordinal read and the header insert cannot interleave with
      another writer.
    """
    if db.engine.dialect.name == "sqlite":
        conn = db.session.connection()
        raw = conn.connection.dbapi_connection
        if not raw.in_transaction:
            conn.exec_driver_sql("BEGIN IMMEDIATE")
        return db.session.get(Tenant, tenant_id)

    return lock_for_update(db.session.query(Tenant).filter_by(id=tenant_id)).first()


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = DEFAULT_RETRY_ON,
):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts) by default; callers pass retry_on to
    retry on their own conflict errors.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning(
                "Retrying after %s (attempt %d of %d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc

