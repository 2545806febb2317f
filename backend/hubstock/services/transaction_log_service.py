# Overview: Append-only stock transaction log; paging and replay over it.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func, or_

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import StockTransaction, TransactionKind
from ..time_utils import parse_iso_datetime, to_utc_z
"""
Stock Transaction Log Invariants (authoritative)

- Append-only: one entry per successful stock adjustment; no updates or deletes
  (enforced by mapper events on StockTransaction).
- Entries are written inside the same DB transaction as the StockRecord change
  they record, so no reader sees one without the other.
- No business validation here; callers (stock_service) validate first.
- Per-key order is occurred_at, ties broken by id (insertion sequence).
- The log is the durable source of truth: SUM(delta) per key from zero equals
  StockRecord.quantity.
"""


def append_transaction(
    *,
    product_id: str,
    location_id: str,
    kind: TransactionKind,
    delta: int,
    previous_quantity: int,
    occurred_at: datetime,
    note: Optional[str] = None,
    actor_id: Optional[str] = None,
    transfer_id: int | None = None,
    batch_id: int | None = None,
    order_ref: str | None = None,
) -> StockTransaction:
    """
    Append one entry to the log.

    - No domain logic here.
    - Does not commit; the caller owns the DB transaction.
    """
    tx = StockTransaction(
        product_id=product_id,
        location_id=location_id,
        kind=kind,
        delta=delta,
        previous_quantity=previous_quantity,
        new_quantity=previous_quantity + delta,
        occurred_at=occurred_at,
        note=note,
        actor_id=actor_id,
        transfer_id=transfer_id,
        batch_id=batch_id,
        order_ref=order_ref,
    )
    db.session.add(tx)
    db.session.flush()  # ensures tx.id is assigned without committing
    return tx


def get_transaction(transaction_id: int) -> StockTransaction:
    tx = db.session.get(StockTransaction, transaction_id)
    if tx is None:
        raise NotFoundError("Stock transaction", transaction_id)
    return tx


Cursor = tuple[datetime, int]


def encode_cursor(cursor: Cursor | None) -> str | None:
    if cursor is None:
        return None
    occurred_at, tx_id = cursor
    return f"{to_utc_z(occurred_at, keep_microseconds=True)}|{tx_id}"


def decode_cursor(raw: str | None) -> Cursor | None:
    if not raw:
        return None
    try:
        occurred_raw, id_raw = raw.split("|", 1)
        occurred_at = parse_iso_datetime(occurred_raw)
        tx_id = int(id_raw)
    except ValueError:
        raise ValidationError("cursor must be in format <ISO-8601>|<id>")
    if occurred_at is None:
        raise ValidationError("cursor must be in format <ISO-8601>|<id>")
    return occurred_at, tx_id


@dataclass(frozen=True)
class HistoryPage:
    items: list[StockTransaction]
    next_cursor: Cursor | None

    def to_dict(self) -> dict:
        return {
            "items": [tx.to_dict() for tx in self.items],
            "next_cursor": encode_cursor(self.next_cursor),
        }


class TransactionHistory:
    """
    Newest-first history of one (product, location) key.

    Iteration is lazy and keyset-paged: rows are fetched `page_size` at a
    time. Every call to iter() starts a fresh scan from the newest entry, so
    the same history object can be walked any number of times. `limit`
    caps the total number of entries yielded.
    """

    def __init__(self, product_id: str, location_id: str, *, limit: int | None = None, page_size: int = 100):
        if limit is not None and limit < 0:
            raise ValidationError("limit must be non-negative")
        if page_size <= 0:
            raise ValidationError("page_size must be positive")
        self.product_id = product_id
        self.location_id = location_id
        self.limit = limit
        self.page_size = page_size

    def __iter__(self):
        remaining = self.limit
        cursor = None
        while True:
            size = self.page_size if remaining is None else min(self.page_size, remaining)
            if size <= 0:
                return
            page = self.page(cursor=cursor, size=size)
            yield from page.items
            if remaining is not None:
                remaining -= len(page.items)
            cursor = page.next_cursor
            if cursor is None:
                return

    def page(self, cursor: Cursor | None = None, size: int | None = None) -> HistoryPage:
        size = size or self.page_size
        q = db.session.query(StockTransaction).filter(
            StockTransaction.product_id == self.product_id,
            StockTransaction.location_id == self.location_id,
        )
        if cursor is not None:
            cursor_dt, cursor_id = cursor
            q = q.filter(
                or_(
                    StockTransaction.occurred_at < cursor_dt,
                    and_(StockTransaction.occurred_at == cursor_dt, StockTransaction.id < cursor_id),
                )
            )

        rows = q.order_by(
            StockTransaction.occurred_at.desc(),
            StockTransaction.id.desc(),
        ).limit(size + 1).all()

        has_more = len(rows) > size
        rows = rows[:size]
        next_cursor = (rows[-1].occurred_at, rows[-1].id) if has_more and rows else None
        return HistoryPage(items=rows, next_cursor=next_cursor)


def list_for(product_id: str, location_id: str, limit: int | None = None, page_size: int = 100) -> TransactionHistory:
    return TransactionHistory(product_id, location_id, limit=limit, page_size=page_size)


def replay_quantity(product_id: str, location_id: str) -> int:
    """Quantity implied by the log: SUM(delta) from zero."""
    q = db.session.query(
        func.coalesce(func.sum(StockTransaction.delta), 0)
    ).filter(
        StockTransaction.product_id == product_id,
        StockTransaction.location_id == location_id,
    )
    return int(q.scalar() or 0)


def replay_all() -> dict[tuple[str, str], int]:
    """Log-implied quantity for every key that has at least one entry, keyed (product_id, location_id)."""
    rows = db.session.query(
        StockTransaction.product_id,
        StockTransaction.location_id,
        func.coalesce(func.sum(StockTransaction.delta), 0),
    ).group_by(
        StockTransaction.product_id,
        StockTransaction.location_id,
    ).all()
    return {(product_id, location_id): int(total) for product_id, location_id, total in rows}
