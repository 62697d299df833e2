import uuid
from typing import List, Dict

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio.session import AsyncSession

from newsletter.core.logger import error
from newsletter.core.setup_logger import api_logger
from newsletter.repositories.content_repository import ContentRepository
from newsletter.repositories.delivery_repository import DeliveryRepository
from newsletter.repositories.job_repository import JobRepository
from newsletter.repositories.task_repository import TaskRepository
from newsletter.schemas import JobResponse, JobStats, DeliveryResponse, DeliverySummary


class DispatchService:
    """
    Read-only views over jobs, deliveries and the queue.
    """

    def __init__(
            self,
            job_repository: JobRepository,
            delivery_repository: DeliveryRepository,
            content_repository: ContentRepository,
            task_repository: TaskRepository
    ):
        self.job_repository = job_repository
        self.delivery_repository = delivery_repository
        self.content_repository = content_repository
        self.task_repository = task_repository

    async def get_job(self, job_id: uuid.UUID, db: AsyncSession) -> JobResponse:
        """
        Get a specific job by ID.
        """
        job = await self.job_repository.get(db, job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")

        return JobResponse.model_validate(job)

    async def get_job_stats(self, db: AsyncSession) -> JobStats:
        """
        Job counts by status.
        """
        try:
            stats = await self.job_repository.get_job_stats(db)
            return JobStats(**stats)
        except SQLAlchemyError as e:
            error(api_logger, "Failed to get job stats", context={"error": str(e)})
            raise HTTPException(status_code=500, detail=f"Failed to get job stats: {str(e)}")

    async def list_deliveries(self, content_id: uuid.UUID, db: AsyncSession) -> List[DeliveryResponse]:
        await self._require_content(content_id, db)
        try:
            deliveries = await self.delivery_repository.list_by_content(db, content_id)
            return [DeliveryResponse.model_validate(delivery) for delivery in deliveries]
        except SQLAlchemyError as e:
            error(api_logger, "Failed to list deliveries", context={
                "content_id": content_id,
                "error": str(e),
            })
            raise HTTPException(status_code=500, detail=f"Failed to list deliveries: {str(e)}")

    async def get_delivery_summary(self, content_id: uuid.UUID, db: AsyncSession) -> DeliverySummary:
        """
        Delivery counts per status for one content item.
        """
        await self._require_content(content_id, db)
        try:
            counts = await self.delivery_repository.count_by_status(db, content_id)
            return DeliverySummary(content_id=content_id, total=sum(counts.values()), **counts)
        except SQLAlchemyError as e:
            error(api_logger, "Failed to summarise deliveries", context={
                "content_id": content_id,
                "error": str(e),
            })
            raise HTTPException(status_code=500, detail=f"Failed to get delivery summary: {str(e)}")

    async def get_queue_stats(self, db: AsyncSession) -> Dict[str, int]:
        try:
            return await self.task_repository.get_queue_stats(db)
        except SQLAlchemyError as e:
            error(api_logger, "Failed to get queue stats", context={"error": str(e)})
            raise HTTPException(status_code=500, detail=f"Failed to get queue stats: {str(e)}")

    async def _require_content(self, content_id: uuid.UUID, db: AsyncSession):
        content = await self.content_repository.get_content(db, content_id)
        if not content:
            raise HTTPException(status_code=404, detail="Content not found")
        return content
