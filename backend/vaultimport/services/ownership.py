"""Owner scoping for resources addressed by id."""

from __future__ import annotations

from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from vaultimport.core.exceptions import ForbiddenError, NotFoundError

ModelT = TypeVar("ModelT")


async def get_owned(
    db: AsyncSession,
    model: type[ModelT],
    resource_id: str,
    owner_id: str,
    **get_kwargs: Any,
) -> ModelT:
    """Load a row by primary key and check it belongs to ``owner_id``.

    Raises:
        NotFoundError: If no row has that id.
        ForbiddenError: If the row belongs to another owner.
    """
    instance = await db.get(model, resource_id, **get_kwargs)
    if instance is None:
        raise NotFoundError(model.__name__, resource_id)
    if instance.owner_id != owner_id:
        raise ForbiddenError(model.__name__, resource_id)
    return instance
