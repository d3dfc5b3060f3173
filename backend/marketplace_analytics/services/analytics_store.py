"""Read-only data access for the analytics engines.

Every public method is a coroutine: the blocking SQLAlchemy query runs on a worker
thread inside its own short-lived Session, so an overview can issue its reads
concurrently without sharing a Session across threads.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.exc import TimeoutError as SATimeoutError
from sqlalchemy.orm import Session, sessionmaker

from marketplace_analytics import models
from marketplace_analytics.database import SessionLocal, apply_statement_timeout

logger = logging.getLogger("marketplace.analytics.store")

T = TypeVar("T")

Window = tuple[datetime, datetime]


class _NotNull:
    def __repr__(self) -> str:
        return "NOT_NULL"


NOT_NULL = _NotNull()

ENTITY_MODELS: dict[str, type] = {
    "order": models.MarketplaceOrder,
    "rfq": models.ItemRfq,
    "quote": models.MarketplaceQuote,
    "invoice": models.MarketplaceInvoice,
    "payment": models.MarketplacePayment,
}


class AnalyticsRetrievalError(RuntimeError):
    """A store read failed; the whole analytics request fails with it."""

    def __init__(self, message: str, *, entity: str | None = None, operation: str | None = None):
        self.entity = entity
        self.operation = operation
        super().__init__(message)


class AnalyticsTimeoutError(AnalyticsRetrievalError):
    pass


@dataclass(frozen=True)
class AggregateResult:
    sum: float
    count: int


def _model_for(entity: str):
    try:
        return ENTITY_MODELS[entity]
    except KeyError:
        raise ValueError(f"Unknown analytics entity: {entity!r}") from None


def _resolve_column(model, name: str, joins: list):
    """Resolve `column` or `relation.column`, recording any relationship join."""
    if "." not in name:
        return getattr(model, name)
    relation_name, column_name = name.split(".", 1)
    relation = getattr(model, relation_name)
    target = relation.property.mapper.class_
    # Identity check: `==` on mapped attributes builds SQL, not a bool.
    if not any(joined is relation for joined in joins):
        joins.append(relation)
    return getattr(target, column_name)


def _build_conditions(model, filters: Mapping[str, Any] | None, window: Window | None, joins: list):
    conditions = []
    for name, value in (filters or {}).items():
        column = _resolve_column(model, name, joins)
        if value is NOT_NULL:
            conditions.append(column.is_not(None))
        elif value is None:
            conditions.append(column.is_(None))
        elif isinstance(value, (set, frozenset, list, tuple)):
            conditions.append(column.in_(list(value)))
        else:
            conditions.append(column == value)
    if window is not None:
        start, end = window
        conditions.append(model.created_at >= start)
        conditions.append(model.created_at <= end)
    return conditions


def _pool_status(db: Session) -> str | None:
    try:
        return db.get_bind().pool.status()
    except Exception:
        return None


def _apply(stmt, joins: list, conditions: list):
    for relation in joins:
        stmt = stmt.join(relation)
    if conditions:
        stmt = stmt.where(*conditions)
    return stmt


class SqlAlchemyAnalyticsStore:
    def __init__(self, session_factory: sessionmaker | Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def _run_sync(self, entity: str, operation: str, fn: Callable[[Session], T]) -> T:
        db = self._session_factory()
        try:
            apply_statement_timeout(db)
            return fn(db)
        except SATimeoutError as exc:
            # Pool exhausted: no connection was checked out for this read.
            logger.error(
                "db_pool_timeout",
                extra={
                    "entity": entity,
                    "operation": operation,
                    "pool_status": _pool_status(db),
                    "error": str(exc),
                },
            )
            raise AnalyticsRetrievalError(
                f"Timed out waiting for a connection to read {entity} ({operation})",
                entity=entity,
                operation=operation,
            ) from exc
        except SQLAlchemyError as exc:
            logger.error(
                "analytics_store_query_failed",
                extra={"entity": entity, "operation": operation, "error": str(exc)},
            )
            raise AnalyticsRetrievalError(
                f"Failed to read {entity} ({operation})", entity=entity, operation=operation
            ) from exc
        finally:
            db.close()

    async def _run(self, entity: str, operation: str, fn: Callable[[Session], T]) -> T:
        return await asyncio.to_thread(self._run_sync, entity, operation, fn)

    async def aggregate(
        self,
        entity: str,
        field: str,
        *,
        filters: Mapping[str, Any] | None = None,
        window: Window | None = None,
    ) -> AggregateResult:
        model = _model_for(entity)

        def _query(db: Session) -> AggregateResult:
            joins: list = []
            conditions = _build_conditions(model, filters, window, joins)
            column = _resolve_column(model, field, joins)
            stmt = _apply(select(func.coalesce(func.sum(column), 0), func.count()).select_from(model), joins, conditions)
            total, count = db.execute(stmt).one()
            return AggregateResult(sum=float(total or 0.0), count=int(count or 0))

        return await self._run(entity, "aggregate", _query)

    async def count(
        self,
        entity: str,
        *,
        filters: Mapping[str, Any] | None = None,
        window: Window | None = None,
    ) -> int:
        model = _model_for(entity)

        def _query(db: Session) -> int:
            joins: list = []
            conditions = _build_conditions(model, filters, window, joins)
            stmt = _apply(select(func.count()).select_from(model), joins, conditions)
            return int(db.execute(stmt).scalar() or 0)

        return await self._run(entity, "count", _query)

    async def group_by(
        self,
        entity: str,
        field: str,
        *,
        filters: Mapping[str, Any] | None = None,
        window: Window | None = None,
    ) -> list:
        """Distinct values of `field`, in first-seen order."""
        model = _model_for(entity)

        def _query(db: Session) -> list:
            joins: list = []
            conditions = _build_conditions(model, filters, window, joins)
            column = _resolve_column(model, field, joins)
            stmt = _apply(select(column).select_from(model), joins, conditions).order_by(model.created_at.asc())
            seen: dict = {}
            for (value,) in db.execute(stmt):
                seen.setdefault(value, None)
            return list(seen)

        return await self._run(entity, "group_by", _query)

    async def find_many(
        self,
        entity: str,
        fields: Sequence[str],
        *,
        filters: Mapping[str, Any] | None = None,
        window: Window | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        model = _model_for(entity)

        def _query(db: Session) -> list[dict[str, Any]]:
            joins: list = []
            conditions = _build_conditions(model, filters, window, joins)
            columns = [_resolve_column(model, name, joins) for name in fields]
            stmt = _apply(select(*columns).select_from(model), joins, conditions)
            if order_by:
                descending = order_by.startswith("-")
                order_col = _resolve_column(model, order_by.lstrip("-"), joins)
                stmt = stmt.order_by(order_col.desc() if descending else order_col.asc())
            return [dict(zip(fields, row)) for row in db.execute(stmt)]

        return await self._run(entity, "find_many", _query)

    async def seller_display_names(self, seller_ids: Iterable[str]) -> dict[str, str]:
        ids = sorted({str(s) for s in seller_ids if s})
        if not ids:
            return {}

        def _query(db: Session) -> dict[str, str]:
            rows = db.execute(
                select(models.SellerProfile.id, models.SellerProfile.display_name).where(
                    models.SellerProfile.id.in_(ids)
                )
            )
            return {str(sid): name for sid, name in rows if name}

        return await self._run("seller_profile", "lookup", _query)

    async def seller_countries(self, seller_ids: Iterable[str]) -> dict[str, str]:
        ids = sorted({str(s) for s in seller_ids if s})
        if not ids:
            return {}

        def _query(db: Session) -> dict[str, str]:
            rows = db.execute(
                select(models.SellerProfile.id, models.SellerProfile.country).where(
                    models.SellerProfile.id.in_(ids)
                )
            )
            return {str(sid): country for sid, country in rows if country}

        return await self._run("seller_profile", "lookup", _query)

    async def item_categories(self, item_ids: Iterable[str]) -> dict[str, str]:
        ids = sorted({str(i) for i in item_ids if i})
        if not ids:
            return {}

        def _query(db: Session) -> dict[str, str]:
            rows = db.execute(select(models.Item.id, models.Item.category).where(models.Item.id.in_(ids)))
            return {str(iid): category for iid, category in rows if category}

        return await self._run("item", "lookup", _query)

    async def seller_exists(self, seller_id: str) -> bool:
        def _query(db: Session) -> bool:
            row = db.execute(
                select(models.SellerProfile.id).where(models.SellerProfile.id == seller_id).limit(1)
            ).first()
            return row is not None

        return await self._run("seller_profile", "exists", _query)
