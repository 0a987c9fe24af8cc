"""Delete patient tokens that are past their validity window.

Standalone script meant for a scheduler (cron, a Kubernetes CronJob).
Verification already rejects expired tokens, so this only keeps the
patients_tokens table from growing.

Usage:
    python -m scripts.purge_expired_tokens
"""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from patient_portal.services import token_authority

logger = logging.getLogger(__name__)


async def run_purge(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Purge expired tokens and commit.

    Args:
        session: Async database session.
        now: Reference time override.

    Returns:
        Number of deleted tokens.

    Raises:
        StorageError: If a delete fails. Nothing is committed in that case.
    """
    try:
        deleted = await token_authority.purge_expired(session, now=now)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info("Purge complete: %d expired token(s) deleted", deleted)
    return deleted


async def main() -> None:
    """CLI entry point: purge against the configured database."""
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

    from patient_portal.core.config import settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    engine = create_async_engine(settings.database_url, echo=False)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with factory() as session:
        await run_purge(session)

    await engine.dispose()


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
