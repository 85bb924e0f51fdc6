"""Async repository pattern for database access.

Provides a generic base repository with lookups and creation over an
injected AsyncSession. The storefront subclasses this to add
domain-specific queries.

Example: CartRepository extending BaseRepository.
"""

from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from core.models.base import Base

# ---------------------------------------------------------------------------
# Type variable for model classes
# ---------------------------------------------------------------------------

ModelT = TypeVar("ModelT", bound=Base)

# ---------------------------------------------------------------------------
# Base repository
# ---------------------------------------------------------------------------

class BaseRepository(Generic[ModelT]):
    """Generic async repository: lookups and creation.

    Subclass and set `model` to your SQLAlchemy model::

        class CartRepository(BaseRepository[CartItem]):
            model = CartItem

            async def lines_for(self, holder_id: str):
                stmt = select(self.model).where(self.model.holder_id == holder_id)
                result = await self.session.execute(stmt)
                return list(result.scalars().all())
    """

    model: type[ModelT]

    def __init__(self, session: AsyncSession):
        self.session = session

    # -- Get by ID --

    async def get_model(self, item_id: str | UUID) -> ModelT | None:
        """Get the mapped instance by ID."""
        key = as_uuid(item_id)
        if key is None:
            return None
        return await self.session.get(self.model, key)

    async def get(self, item_id: str | UUID) -> dict | None:
        """Get a single item by ID."""
        row = await self.get_model(item_id)
        return row.to_dict() if row else None

    # -- Create --

    async def create(self, data: dict[str, Any]) -> dict:
        """Create a new item."""
        item = self.model(**data)
        self.session.add(item)
        await self.session.flush()
        return item.to_dict()


def as_uuid(value: str | UUID) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None
