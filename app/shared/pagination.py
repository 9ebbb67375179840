"""Offset pagination for list endpoints."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Generic, TypeVar

from fastapi import Query
from pydantic import BaseModel

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class PaginationParams(BaseModel):
    limit: int
    offset: int


def get_pagination_params(
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
) -> PaginationParams:
    """FastAPI dependency for pagination params."""
    return PaginationParams(limit=limit, offset=offset)


class Page(BaseModel, Generic[SchemaT]):
    """One page of a list ordered newest first."""

    items: list[SchemaT]
    total: int
    limit: int
    offset: int
    has_more: bool


def build_page(
    rows: Iterable[Any],
    total: int,
    params: PaginationParams,
    schema: type[SchemaT],
) -> Page[SchemaT]:
    """Validate ORM rows into ``schema`` and wrap them with page metadata."""
    items = [schema.model_validate(row) for row in rows]
    return Page[schema](
        items=items,
        total=total,
        limit=params.limit,
        offset=params.offset,
        has_more=params.offset + len(items) < total,
    )
