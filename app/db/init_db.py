"""
Prepare an empty database: create the tables and the first platform ADMIN user.

Run once after pointing DATABASE_URL at a new database:
  ADMIN_EMAIL=admin@example.org
  ADMIN_PASSWORD=YourSecurePassword
  python -m app.db.init_db

Safe to re-run: tables are only created when missing, and an existing user with
ADMIN_EMAIL is promoted to platform ADMIN with the configured password.
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

import app.core.models  # noqa: F401  registers every table on Base.metadata
from app.auth.models import User
from app.auth.security import hash_password
from app.core.config import Settings, settings
from app.core.enums import UserRole
from app.core.logging_config import setup_logging
from app.db.session import AsyncSessionLocal, Base, engine

logger = logging.getLogger(__name__)

ADMIN_NAME = "Platform"
ADMIN_SURNAME = "Admin"


async def create_tables(db_engine: AsyncEngine) -> None:
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready (%s)", len(Base.metadata.tables))


async def seed_admin(db: AsyncSession, config: Settings) -> Optional[User]:
    """Create or refresh the platform ADMIN named by the settings. Returns None when not configured."""
    email = (config.admin_email or "").strip()
    password = config.admin_password or ""
    if not email or not password:
        logger.warning("ADMIN_EMAIL / ADMIN_PASSWORD not set; skipping admin user")
        return None

    result = await db.execute(
        select(User).where(func.lower(User.email) == email.lower())
    )
    user = result.scalar_one_or_none()
    if user is None:
        user = User(
            center_id=None,
            name=ADMIN_NAME,
            surname=ADMIN_SURNAME,
            email=email,
            password_hash=hash_password(password),
            role=UserRole.ADMIN.value,
            status="ACTIVE",
        )
        db.add(user)
        logger.info("Created ADMIN user %s", email)
    else:
        user.center_id = None
        user.role = UserRole.ADMIN.value
        user.status = "ACTIVE"
        user.password_hash = hash_password(password)
        logger.info("Updated existing user %s to ADMIN", email)
    await db.commit()
    await db.refresh(user)
    return user


async def main() -> None:
    setup_logging(settings)
    await create_tables(engine)
    async with AsyncSessionLocal() as db:
        try:
            await seed_admin(db, settings)
        except Exception:
            await db.rollback()
            logger.exception("Admin seed failed")
            raise
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
