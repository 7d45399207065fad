"""Base repository with tenant-scoped queries."""

from typing import Generic, TypeVar, Type
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.persistence.database import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Base repository with tenant-scoped query methods.

    Every read takes the tenant id explicitly; ``None`` is reserved for
    system jobs (timeout sweep, retention) that work across tenants.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """Initialize repository with model and session."""
        self.model = model
        self.session = session

    async def get_by_id(self, tenant_id: int | None, id: int) -> ModelType | None:
        """Get entity by ID, scoped to tenant.

        Rows already in the identity map are refreshed, since status and
        counters are changed with bulk UPDATE statements.
        """
        stmt = select(self.model).where(self.model.id == id)
        if tenant_id is not None:
            stmt = stmt.where(self.model.tenant_id == tenant_id)
        stmt = stmt.execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list(
        self,
        tenant_id: int | None,
        skip: int = 0,
        limit: int = 100,
        **filters
    ) -> list[ModelType]:
        """List entities, scoped to tenant, newest first."""
        stmt = select(self.model)

        if tenant_id is not None:
            stmt = stmt.where(self.model.tenant_id == tenant_id)

        # Apply additional filters; None means "no filter"
        for key, value in filters.items():
            if value is not None and hasattr(self.model, key):
                stmt = stmt.where(getattr(self.model, key) == value)

        stmt = stmt.order_by(self.model.id.desc()).offset(skip).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create(self, tenant_id: int | None, **data) -> ModelType:
        """Create new entity with tenant_id."""
        if tenant_id is not None:
            data["tenant_id"] = tenant_id
        instance = self.model(**data)
        self.session.add(instance)
        await self.session.commit()
        await self.session.refresh(instance)
        return instance
