"""
Idempotent schema migrations run at startup (PostgreSQL only).

``Base.metadata.create_all`` creates missing tables; these statements cover
what create_all cannot: indexes added after a table already exists and
PostgreSQL-only partial indexes. Every statement is safe to run repeatedly.
"""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from app.core.logging import get_logger

logger = get_logger(__name__)


async def run_migration_001(conn: AsyncConnection) -> None:
    """001 - partial index for the dispatcher's due-job scan."""
    await conn.execute(text("""
        CREATE INDEX IF NOT EXISTS idx_notification_jobs_pending_run_at
        ON notification_jobs(run_at) WHERE status = 'PENDING';
    """))


async def run_migration_002(conn: AsyncConnection) -> None:
    """002 - partial index for the stale-claim sweep over in_progress jobs."""
    await conn.execute(text("""
        CREATE INDEX IF NOT EXISTS idx_notification_jobs_in_progress_claimed
        ON notification_jobs(claimed_at) WHERE status = 'IN_PROGRESS';
    """))


async def run_migration_003(conn: AsyncConnection) -> None:
    """003 - dispatcher lists enabled subscriptions per tenant on every job."""
    await conn.execute(text("""
        CREATE INDEX IF NOT EXISTS idx_push_subscriptions_tenant_enabled
        ON push_subscriptions(tenant_id) WHERE enabled = TRUE;
    """))


MIGRATIONS = (
    ("001", run_migration_001),
    ("002", run_migration_002),
    ("003", run_migration_003),
)


async def run_all_migrations(conn: AsyncConnection) -> None:
    for name, migration in MIGRATIONS:
        logger.info(f"Running migration {name}...")
        await migration(conn)
