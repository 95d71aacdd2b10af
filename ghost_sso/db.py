"""
Ghost Database Gateway
======================

Parameterized read/write access to the MySQL database Ghost owns. The bridge
is a co-tenant: it reads staff users and settings, and inserts rows into
Ghost's ``tokens`` and ``sessions`` tables exactly as Ghost itself would.

The engine (and its bounded connection pool) is created once at startup
and handed to ``GhostGateway``; nothing here is ambient global state.
Each statement checks a connection out of the pool, runs in its own
transaction and returns it, so no connection is held across other I/O.
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ghost_sso.auth.utils import generate_object_id, generate_uuid
from ghost_sso.config import Settings
from ghost_sso.errors import DataAccessError

logger = logging.getLogger(__name__)

# Every status Ghost still lets sign in; only 'inactive' is excluded.
STAFF_LOGIN_STATUSES = ("active", "warn-1", "warn-2", "warn-3", "locked")

SESSION_SECRET_KEY = "admin_session_secret"


# =============================================================================
# Engine Lifecycle
# =============================================================================

def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """
    Create the pooled async engine for the Ghost database.

    Args:
        settings: Application settings (DB_* values)

    Returns:
        AsyncEngine backed by aiomysql with at most DB_POOL_SIZE connections
    """
    url = URL.create(
        "mysql+aiomysql",
        username=settings.DB_USER,
        password=settings.DB_PASSWORD,
        host=settings.DB_HOST,
        port=settings.DB_PORT,
        database=settings.DB_NAME,
        query={"charset": "utf8mb4"},
    )

    logger.debug(
        "Initializing database pool",
        extra={"host": settings.DB_HOST, "database": settings.DB_NAME, "port": settings.DB_PORT},
    )

    return create_async_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=0,
        pool_timeout=settings.DB_POOL_TIMEOUT_SECONDS,
        pool_pre_ping=True,
        pool_recycle=300,
    )


def utcnow() -> datetime:
    """Current instant as naive UTC, the way Ghost stores DATETIME columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _driver_code(exc: DBAPIError) -> Optional[int]:
    args = getattr(exc.orig, "args", None) or ()
    if args and isinstance(args[0], int):
        return args[0]
    return None


# =============================================================================
# Gateway
# =============================================================================

class GhostGateway:
    """
    Read/write access to the tables Ghost shares with the bridge.

    Caller-supplied values are always bound as parameters, never
    interpolated into statement text.
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def execute(self, statement: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Execute one parameterized statement in its own transaction.

        Args:
            statement: SQL with ``:name`` placeholders
            params: Values to bind to the placeholders

        Returns:
            Result rows as dicts (empty for statements returning no rows)

        Raises:
            DataAccessError: On connection loss, constraint violation or
                malformed statement; carries the driver error number
        """
        params = params or {}
        start = time.perf_counter()

        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(text(statement), params)
                rows = [dict(row) for row in result.mappings().all()] if result.returns_rows else []
        except DBAPIError as e:
            code = _driver_code(e)
            logger.error(
                "Query failed",
                extra={"sql": statement[:100], "code": code, "error_type": type(e.orig).__name__},
            )
            raise DataAccessError(f"Query failed ({type(e.orig).__name__})", driver_code=code) from e
        except SQLAlchemyError as e:
            logger.error("Query failed", extra={"sql": statement[:100], "error_type": type(e).__name__})
            raise DataAccessError(f"Query failed ({type(e).__name__})") from e

        logger.debug(
            "Query executed",
            extra={
                "sql": statement[:100],
                "params": len(params),
                "rows": len(rows),
                "duration_ms": round((time.perf_counter() - start) * 1000, 1),
            },
        )
        return rows

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def find_active_staff_user(self, email: str) -> Optional[Dict[str, Any]]:
        """
        Staff user with this exact email and a loginable status.

        Returns:
            Row with ``id``, ``email`` and ``status``, or None
        """
        statuses = ", ".join(f"'{status}'" for status in STAFF_LOGIN_STATUSES)
        rows = await self.execute(
            f"SELECT id, email, status FROM users WHERE email = :email AND status IN ({statuses})",
            {"email": email},
        )
        return rows[0] if rows else None

    async def fetch_setting(self, key: str) -> Optional[str]:
        rows = await self.execute(
            "SELECT value FROM settings WHERE `key` = :key",
            {"key": key},
        )
        if rows:
            return rows[0]["value"]
        return None

    async def fetch_session_secret(self) -> Optional[str]:
        """
        Ghost's admin session signing secret.

        Returns:
            The secret, or None when Ghost was never fully set up
        """
        secret = await self.fetch_setting(SESSION_SECRET_KEY)
        if secret is None:
            logger.warning("Ghost admin_session_secret not found in settings")
        return secret

    async def count_active_staff(self) -> int:
        rows = await self.execute("SELECT count(*) AS count FROM users WHERE status = 'active'")
        return int(rows[0]["count"]) if rows else 0

    async def is_staff_empty(self) -> bool:
        """True on a fresh Ghost install that has no active staff user yet."""
        return await self.count_active_staff() == 0

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def insert_magic_token(
        self,
        token: str,
        email: str,
        intent: str = "signin",
        now: Optional[datetime] = None,
    ) -> str:
        """
        Insert a one-time login token for Ghost's magic-link redemption.

        Args:
            token: Opaque token value placed in the magic link
            email: Member email the token signs in
            intent: Ghost token type ('signin' or 'signup')
            now: Creation instant (naive UTC); defaults to now

        Returns:
            Primary key of the inserted row
        """
        now = now or utcnow()
        row_id = generate_object_id()
        await self.execute(
            "INSERT INTO tokens (id, token, uuid, data, created_at, updated_at, used_count, otc_used_count) "
            "VALUES (:id, :token, :uuid, :data, :created_at, :updated_at, 0, 0)",
            {
                "id": row_id,
                "token": token,
                "uuid": generate_uuid(),
                "data": json.dumps({"email": email, "type": intent}),
                "created_at": now,
                "updated_at": now,
            },
        )
        return row_id

    async def insert_session(
        self,
        session_id: str,
        user_id: str,
        session_data: Dict[str, Any],
        now: Optional[datetime] = None,
        row_id: Optional[str] = None,
    ) -> str:
        """
        Insert an admin session row that Ghost will look up by session id.

        Returns:
            Primary key of the inserted row
        """
        now = now or utcnow()
        row_id = row_id or generate_object_id()
        await self.execute(
            "INSERT INTO sessions (id, session_id, user_id, session_data, created_at, updated_at) "
            "VALUES (:id, :session_id, :user_id, :session_data, :created_at, :updated_at)",
            {
                "id": row_id,
                "session_id": session_id,
                "user_id": user_id,
                "session_data": json.dumps(session_data),
                "created_at": now,
                "updated_at": now,
            },
        )
        return row_id

    # -------------------------------------------------------------------------
    # Lifecycle / Probes
    # -------------------------------------------------------------------------

    async def ping(self) -> bool:
        """Connectivity check for the readiness probe."""
        try:
            await self.execute("SELECT 1")
        except DataAccessError as e:
            logger.error("Database connection failed", extra={"driver_code": e.driver_code})
            return False
        return True

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Database pool closed")
