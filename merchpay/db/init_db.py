"""
Create tables and the first ADMIN user.

Run once with env set:
  ADMIN_DNI=12345678
  ADMIN_PASSWORD=YourSecurePassword

Creates:
- all tables declared on Base (users, payments, payment_audit_logs) if missing
- users: one ADMIN row for ADMIN_DNI (password updated if it already exists)
"""
import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

import merchpay.core.models  # noqa: F401  (register tables on Base)
from merchpay.auth.models import User
from merchpay.auth.security import hash_password
from merchpay.core.config import settings
from merchpay.core.enums import UserRole
from merchpay.db.session import AsyncSessionLocal, Base, engine
from merchpay.utils.logger import get_logger

logger = get_logger(__name__)


async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Tables ensured")


async def seed_admin(db: AsyncSession) -> None:
    if not settings.admin_dni or not settings.admin_password:
        logger.info("No ADMIN_DNI/ADMIN_PASSWORD; skipping admin user")
        return

    admin = (await db.execute(select(User).where(User.dni == settings.admin_dni))).scalar_one_or_none()
    if not admin:
        db.add(
            User(
                dni=settings.admin_dni,
                first_name="Admin",
                last_name="",
                role=UserRole.ADMIN.value,
                password_hash=hash_password(settings.admin_password),
                must_change_password=False,
                status="ACTIVE",
            )
        )
        logger.info("Created ADMIN user %s", settings.admin_dni)
    else:
        admin.role = UserRole.ADMIN.value
        admin.password_hash = hash_password(settings.admin_password)
        logger.info("Updated existing user %s to ADMIN", settings.admin_dni)
    await db.commit()


async def main() -> None:
    await create_tables()
    async with AsyncSessionLocal() as db:
        try:
            await seed_admin(db)
        except Exception:
            await db.rollback()
            raise


if __name__ == "__main__":
    asyncio.run(main())
