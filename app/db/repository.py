"""Base repository class with the CRUD operations shared by all models."""

import operator
from typing import (
    Any,
    Callable,
    Generic,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
)
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)

# Suffixes accepted by paginate()/count(), e.g. ``amount__gte=100``
_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
}


class BaseRepository(Generic[ModelType]):
    """
    Repository pattern over one SQLAlchemy model.

    Repositories never commit: the caller (engine, service or UnitOfWork)
    owns the transaction and decides where its boundaries are.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    async def create(self, **kwargs) -> ModelType:
        """
        Create a new row and flush it so database defaults and ids are populated.

        Args:
            **kwargs: Field values for the new row

        Returns:
            Created model instance
        """
        instance = self.model(**kwargs)
        self.session.add(instance)
        await self.session.flush()
        await self.session.refresh(instance)
        return instance

    async def create_many(self, rows: Iterable[dict[str, Any]]) -> List[ModelType]:
        """Add several rows with a single flush."""
        instances = [self.model(**row) for row in rows]
        self.session.add_all(instances)
        await self.session.flush()
        return instances

    async def get_by_id(self, id: int) -> Optional[ModelType]:
        result = await self.session.execute(
            select(self.model).where(self.model.id == id)  # type: ignore
        )
        return result.scalar_one_or_none()

    async def get_by_field(self, field_name: str, value: Any) -> Optional[ModelType]:
        """
        Get a single row by a field value.

        Args:
            field_name: Name of the field to search
            value: Value to search for

        Returns:
            Model instance or None if not found
        """
        field = getattr(self.model, field_name)
        result = await self.session.execute(select(self.model).where(field == value))
        return result.scalar_one_or_none()

    async def paginate(
        self,
        page: int = 1,
        limit: int = 50,
        order_by: Sequence[Any] = (),
        **filters,
    ) -> Tuple[List[ModelType], int]:
        """
        Get one page of rows matching the filters.

        Filters support comparison operators using double underscore syntax
        (``__lt``, ``__lte``, ``__gt``, ``__gte``, ``__ne``); a bare field
        name means equality. Filters whose value is None are ignored.

        Examples:
            await repo.paginate(page=2, limit=20, status="FAILED")
            await repo.paginate(order_by=[desc(AuditLog.timestamp)], timestamp__gte=since)

        Returns:
            Tuple of (rows on the page, total number of matching rows)
        """
        filters = {key: value for key, value in filters.items() if value is not None}
        query = self._apply_filters(select(self.model), filters)
        query = query.order_by(*order_by).offset((page - 1) * limit).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all()), await self.count(**filters)

    def _apply_filters(self, query, filters: dict):
        for filter_key, value in filters.items():
            field_name, _, suffix = filter_key.partition("__")
            compare = _OPERATORS.get(suffix or "eq")
            if compare is None:
                raise ValueError(f"Unsupported filter operator: {filter_key}")
            query = query.where(compare(getattr(self.model, field_name), value))
        return query

    async def update(self, id: int, **kwargs) -> Optional[ModelType]:
        """
        Update a row by ID.

        Args:
            id: Row ID
            **kwargs: Fields to update with their new values

        Returns:
            Updated model instance or None if not found
        """
        await self.session.execute(
            update(self.model)
            .where(self.model.id == id)  # type: ignore
            .values(**kwargs)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        result = await self.session.execute(
            select(self.model)
            .where(self.model.id == id)  # type: ignore
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count(self, **filters) -> int:
        """Count rows matching the given filters (same syntax as paginate())."""
        query = self._apply_filters(select(func.count(self.model.id)), filters)  # type: ignore
        result = await self.session.execute(query)
        return result.scalar() or 0
