import logging

from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from productsync.config import settings
from productsync.models.user import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


async def seed_admin(session: AsyncSession) -> None:
    if not settings.admin_password:
        logger.info("ADMIN_PASSWORD not set, admin user not seeded")
        return

    result = await session.execute(select(User).where(User.username == settings.admin_username))
    if not result.scalar_one_or_none():
        admin = User(
            username=settings.admin_username,
            email=None,
            hashed_password=hash_password(settings.admin_password),
            role="admin",
            is_active=True,
        )
        session.add(admin)
        logger.info("Admin user created: %s", settings.admin_username)

    await session.commit()
