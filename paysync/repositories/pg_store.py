from __future__ import annotations

import asyncio
import functools
import logging
from decimal import Decimal
from typing import Any, Callable, Optional, Tuple, TypeVar

import psycopg2
from psycopg2 import errors as pg_errors
from psycopg2 import sql
from psycopg2.extras import Json, RealDictCursor

from paysync.db.client import Database
from paysync.domain.enums import Processor, RequestType
from paysync.domain.errors import DuplicateOrderError, PersistenceError, RecordNotFoundError
from paysync.domain.models import SET_ONCE_FIELDS, PaymentRecord
from paysync.domain.requests import RequestRef, RequestUpdate

from .base import PaymentRecordStore, validate_patch

logger = logging.getLogger(__name__)

T = TypeVar("T")

TABLE = "payment_records"

_COLUMNS = (
    "id",
    "order_id",
    "processor_payment_id",
    "processor",
    "request_type",
    "request_id",
    "status",
    "fulfilled",
    "amount_expected",
    "amount_actual_paid",
    "currency",
    "partial_payment_note",
    "failure_reason",
    "split_status",
    "split_id",
    "split_error",
    "metadata",
    "created_at",
    "updated_at",
    "finished_at",
    "failed_at",
)


def _hydrate(row: dict[str, Any]) -> PaymentRecord:
    def _dec(value: Any) -> Decimal | None:
        return Decimal(str(value)) if value is not None else None

    return PaymentRecord(
        id=str(row["id"]),
        order_id=str(row["order_id"]),
        processor=Processor(str(row["processor"])),
        request=RequestRef(type=RequestType(str(row["request_type"])), id=str(row["request_id"])),
        processor_payment_id=row.get("processor_payment_id"),
        status=row.get("status"),
        fulfilled=bool(row.get("fulfilled")),
        amount_expected=_dec(row.get("amount_expected")),
        amount_actual_paid=_dec(row.get("amount_actual_paid")),
        currency=row.get("currency"),
        partial_payment_note=row.get("partial_payment_note"),
        failure_reason=row.get("failure_reason"),
        split_status=row.get("split_status"),
        split_id=row.get("split_id"),
        split_error=row.get("split_error"),
        metadata=dict(row.get("metadata") or {}),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
        finished_at=row.get("finished_at"),
        failed_at=row.get("failed_at"),
    )


def _adapt(column: str, value: Any) -> Any:
    if column == "metadata":
        return Json(value or {})
    return value


def _assignment(column: str) -> sql.Composed:
    if column in SET_ONCE_FIELDS:
        return sql.SQL("{col} = COALESCE({col}, %s)").format(col=sql.Identifier(column))
    return sql.SQL("{} = %s").format(sql.Identifier(column))


def _set_clause(patch: dict[str, Any]) -> tuple[sql.Composed, list[Any]]:
    columns = sorted(patch)
    clause = sql.SQL(", ").join(_assignment(column) for column in columns)
    return clause, [_adapt(column, patch[column]) for column in columns]


def _request_update_statement(update: RequestUpdate) -> tuple[sql.Composed, list[Any]]:
    clause, params = _set_clause(update.fields)
    statement = sql.SQL("UPDATE {table} SET {clause} WHERE id = %s").format(
        table=sql.Identifier(update.ref.target.table),
        clause=clause,
    )
    return statement, [*params, update.ref.id]


class PgPaymentStore(PaymentRecordStore):
    """PostgreSQL-backed store using raw psycopg2.

    psycopg2 is blocking, so every call runs in a worker thread.
    """

    name = "postgres"

    def __init__(self, db: Database):
        self.db = db

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(functools.partial(fn, *args))
        except psycopg2.Error as exc:
            logger.error("database error", extra={"error": str(exc)})
            raise PersistenceError(str(exc)) from exc

    async def find_by_order_id(self, order_id: str) -> Optional[PaymentRecord]:
        return await self._run(self._select_one, "order_id", order_id)

    async def find_by_processor_payment_id(self, payment_id: str) -> Optional[PaymentRecord]:
        return await self._run(self._select_one, "processor_payment_id", payment_id)

    async def find_by_split_id(self, split_id: str) -> Optional[PaymentRecord]:
        return await self._run(self._select_one, "split_id", split_id)

    async def create(self, record: PaymentRecord) -> PaymentRecord:
        return await self._run(self._insert, record)

    async def update(self, record_id: str, patch: dict[str, Any]) -> PaymentRecord:
        validate_patch(patch)
        return await self._run(self._update, record_id, patch)

    async def claim_fulfillment(
        self,
        record_id: str,
        patch: dict[str, Any],
        confirmation: RequestUpdate,
    ) -> Optional[PaymentRecord]:
        validate_patch(patch)
        return await self._run(self._claim, record_id, patch, confirmation)

    async def update_unfulfilled(
        self,
        record_id: str,
        patch: dict[str, Any],
        request_update: Optional[RequestUpdate] = None,
    ) -> Optional[Tuple[PaymentRecord, PaymentRecord]]:
        validate_patch(patch)
        return await self._run(self._update_unfulfilled, record_id, patch, request_update)

    async def update_request(self, update: RequestUpdate) -> None:
        await self._run(self._update_request, update)

    async def close(self) -> None:
        await asyncio.to_thread(self.db.close)

    def _select_one(self, column: str, value: str) -> Optional[PaymentRecord]:
        statement = sql.SQL("SELECT * FROM {table} WHERE {column} = %s LIMIT 1").format(
            table=sql.Identifier(TABLE),
            column=sql.Identifier(column),
        )
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(statement, (value,))
                row = cur.fetchone()
        return _hydrate(row) if row else None

    def _insert(self, record: PaymentRecord) -> PaymentRecord:
        values = {
            "id": record.id,
            "order_id": record.order_id,
            "processor_payment_id": record.processor_payment_id,
            "processor": record.processor.value,
            "request_type": record.request.type.value,
            "request_id": record.request.id,
            "status": record.status,
            "fulfilled": record.fulfilled,
            "amount_expected": record.amount_expected,
            "amount_actual_paid": record.amount_actual_paid,
            "currency": record.currency,
            "partial_payment_note": record.partial_payment_note,
            "failure_reason": record.failure_reason,
            "split_status": record.split_status,
            "split_id": record.split_id,
            "split_error": record.split_error,
            "metadata": record.metadata,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
            "finished_at": record.finished_at,
            "failed_at": record.failed_at,
        }
        statement = sql.SQL("INSERT INTO {table} ({columns}) VALUES ({values}) RETURNING *").format(
            table=sql.Identifier(TABLE),
            columns=sql.SQL(", ").join(sql.Identifier(column) for column in _COLUMNS),
            values=sql.SQL(", ").join(sql.Placeholder() for _ in _COLUMNS),
        )
        try:
            with self.db.connection() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(statement, [_adapt(column, values[column]) for column in _COLUMNS])
                    row = cur.fetchone()
        except pg_errors.UniqueViolation as exc:
            raise DuplicateOrderError(record.order_id) from exc
        return _hydrate(row)

    def _update(self, record_id: str, patch: dict[str, Any]) -> PaymentRecord:
        clause, params = _set_clause(patch)
        statement = sql.SQL("UPDATE {table} SET {clause} WHERE id = %s RETURNING *").format(
            table=sql.Identifier(TABLE),
            clause=clause,
        )
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(statement, [*params, record_id])
                row = cur.fetchone()
        if row is None:
            raise RecordNotFoundError(record_id)
        return _hydrate(row)

    def _claim(
        self,
        record_id: str,
        patch: dict[str, Any],
        confirmation: RequestUpdate,
    ) -> Optional[PaymentRecord]:
        clause, params = _set_clause({**patch, "fulfilled": True})
        statement = sql.SQL(
            "UPDATE {table} SET {clause} WHERE id = %s AND fulfilled = FALSE RETURNING *"
        ).format(table=sql.Identifier(TABLE), clause=clause)
        request_statement, request_params = _request_update_statement(confirmation)
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(statement, [*params, record_id])
                row = cur.fetchone()
                if row is None:
                    # Another delivery already fulfilled this record
                    return None
                cur.execute(request_statement, request_params)
                if cur.rowcount == 0:
                    logger.warning(
                        "booking row missing on confirmation",
                        extra={
                            "record_id": record_id,
                            "request_type": confirmation.ref.type.value,
                            "request_id": confirmation.ref.id,
                        },
                    )
        return _hydrate(row)

    def _update_unfulfilled(
        self,
        record_id: str,
        patch: dict[str, Any],
        request_update: Optional[RequestUpdate],
    ) -> Optional[Tuple[PaymentRecord, PaymentRecord]]:
        lock = sql.SQL("SELECT * FROM {table} WHERE id = %s FOR UPDATE").format(table=sql.Identifier(TABLE))
        clause, params = _set_clause(patch)
        statement = sql.SQL(
            "UPDATE {table} SET {clause} WHERE id = %s AND fulfilled = FALSE RETURNING *"
        ).format(table=sql.Identifier(TABLE), clause=clause)
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(lock, (record_id,))
                before = cur.fetchone()
                if before is None:
                    raise RecordNotFoundError(record_id)
                if before["fulfilled"]:
                    return None
                cur.execute(statement, [*params, record_id])
                after = cur.fetchone()
                if request_update is not None:
                    request_statement, request_params = _request_update_statement(request_update)
                    cur.execute(request_statement, request_params)
        return _hydrate(before), _hydrate(after)

    def _update_request(self, update: RequestUpdate) -> None:
        statement, params = _request_update_statement(update)
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(statement, params)
