from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from hostelhub.models import Profile


class ProfileRepository:
    async def get_role(self, db: AsyncSession, user_id: str) -> Optional[str]:
        result = await db.execute(select(Profile.role).where(Profile.id == user_id))
        return result.scalar_one_or_none()


profile_repository = ProfileRepository()
