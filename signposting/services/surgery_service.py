"""
Surgery service - lookups for the tenant boundary
"""
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from signposting.core.exceptions import NotFoundException
from signposting.models.surgery import Surgery

logger = structlog.get_logger()


class SurgeryService:
    """Surgery service for lookups"""

    @staticmethod
    async def get_surgery(
        db: AsyncSession,
        surgery_id: UUID,
    ) -> Surgery:
        """
        Get surgery by ID

        Args:
            db: Database session
            surgery_id: Surgery ID

        Returns:
            Surgery

        Raises:
            NotFoundException: If surgery not found
        """
        result = await db.execute(
            select(Surgery).where(Surgery.id == surgery_id)
        )
        surgery = result.scalar_one_or_none()

        if not surgery:
            raise NotFoundException(
                "Surgery not found",
                detail=f"Surgery with ID {surgery_id} not found"
            )

        return surgery

    @staticmethod
    async def is_workflows_enabled(
        db: AsyncSession,
        surgery_id: UUID,
    ) -> bool:
        """
        Whether the surgery has the workflow module switched on

        Raises:
            NotFoundException: If surgery not found
        """
        surgery = await SurgeryService.get_surgery(db, surgery_id)
        return surgery.is_active and surgery.workflows_enabled


# Create singleton instance
surgery_service = SurgeryService()
