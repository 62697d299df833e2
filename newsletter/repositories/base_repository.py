from typing import Generic, TypeVar, Type, List, Optional, Any, Dict
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, and_
from sqlalchemy.exc import SQLAlchemyError
from newsletter.db import Base

ModelType = TypeVar("ModelType", bound=Base)


class AsyncBaseRepository(Generic[ModelType]):
    """
    Generic async data access for one mapped model.

    Every method takes the session explicitly; callers own the transaction
    and decide when to commit.
    """

    def __init__(self, model: Type[ModelType]):
        self.model = model

    def _conditions(self, condition: Dict[str, Any]) -> list:
        where_conditions = []
        for attr, value in condition.items():
            if hasattr(self.model, attr):
                column = getattr(self.model, attr)
                if isinstance(value, (list, tuple, set)):
                    where_conditions.append(column.in_(list(value)))
                else:
                    where_conditions.append(column == value)
        return where_conditions

    async def create(self, db: AsyncSession, *, obj_in: Dict[str, Any]) -> ModelType:
        """
        Create a new record.
        """
        try:
            db_obj = self.model(**obj_in)
            db.add(db_obj)
            await db.flush()  # Get ID without committing transaction
            await db.refresh(db_obj)
            return db_obj
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def get(self, db: AsyncSession, id: Any) -> Optional[ModelType]:
        """
        Get a record by id.
        """
        stmt = select(self.model).where(self.model.id == id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_condition(
            self,
            db: AsyncSession,
            condition: Dict[str, Any],
            limit: Optional[int] = None,
            order_by=None
    ) -> List[ModelType]:
        """
        Get records based on conditions.
        """
        stmt = select(self.model)

        where_conditions = self._conditions(condition)
        if where_conditions:
            stmt = stmt.where(and_(*where_conditions))

        if order_by is not None:
            stmt = stmt.order_by(order_by)

        if limit:
            stmt = stmt.limit(limit)

        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def bulk_update(
            self,
            db: AsyncSession,
            condition: Dict[str, Any],
            values: Dict[str, Any]
    ) -> int:
        """
        Bulk update records matching condition. Returns the affected row count.
        """
        try:
            values = dict(values)
            if hasattr(self.model, 'updated_at'):
                values['updated_at'] = datetime.now(timezone.utc)

            stmt = update(self.model)

            where_conditions = self._conditions(condition)
            if where_conditions:
                stmt = stmt.where(and_(*where_conditions))

            stmt = stmt.values(**values).execution_options(synchronize_session=False)
            result = await db.execute(stmt)
            return result.rowcount
        except SQLAlchemyError:
            await db.rollback()
            raise

    async def count_by(
            self,
            db: AsyncSession,
            column: str,
            condition: Optional[Dict[str, Any]] = None
    ) -> Dict[Any, int]:
        """
        Count records grouped by one column, e.g. {"sent": 2, "failed": 1}.
        """
        group_column = getattr(self.model, column)
        stmt = select(group_column, func.count(self.model.id)).group_by(group_column)

        if condition:
            where_conditions = self._conditions(condition)
            if where_conditions:
                stmt = stmt.where(and_(*where_conditions))

        result = await db.execute(stmt)
        return {row[0]: row[1] for row in result}
