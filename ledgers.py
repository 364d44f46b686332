"""Spending records from the two historical ledgers.

Months before ``LEDGER_CUTOFF`` were tracked as one snapshot entry per
subcategory; later months have one transaction per real-world event. Both are
exposed as ``SpendingRecord`` rows so that aggregation is written once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Literal, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Entry, Transaction
from periods import MonthKey, uses_legacy_ledger


RecordSource = Literal["entry", "transaction"]
ENTRY_SOURCE: RecordSource = "entry"
TRANSACTION_SOURCE: RecordSource = "transaction"


@dataclass(frozen=True)
class SpendingRecord:
    source: RecordSource
    id: int
    subcategory_id: Optional[int]
    amount_cents: int
    occurred_at: Optional[date] = None
    notes: Optional[str] = None


class SpendingLedger:
    source: RecordSource

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def records(self, key: MonthKey) -> list[SpendingRecord]:
        raise NotImplementedError


class LegacySnapshotLedger(SpendingLedger):
    source: RecordSource = ENTRY_SOURCE

    def __init__(self, session: Session, user_id: int, months) -> None:
        super().__init__(session, user_id)
        self.months = months

    def records(self, key: MonthKey) -> list[SpendingRecord]:
        month = self.months.resolve(key.year, key.month)
        entries = self.session.scalars(
            select(Entry)
            .where(Entry.user_id == self.user_id, Entry.month_id == month.id)
            .order_by(Entry.id)
        ).all()
        return [
            SpendingRecord(
                source=self.source,
                id=entry.id,
                subcategory_id=entry.subcategory_id,
                amount_cents=entry.amount_cents,
            )
            for entry in entries
        ]


class DetailedTransactionLedger(SpendingLedger):
    source: RecordSource = TRANSACTION_SOURCE

    def records(self, key: MonthKey) -> list[SpendingRecord]:
        txns = self.session.scalars(
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.occurred_at >= key.first_day,
                Transaction.occurred_at <= key.last_day,
            )
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        ).all()
        return [
            SpendingRecord(
                source=self.source,
                id=txn.id,
                subcategory_id=txn.subcategory_id,
                amount_cents=txn.amount_cents,
                occurred_at=txn.occurred_at,
                notes=txn.notes,
            )
            for txn in txns
        ]


def ledger_for(session: Session, user_id: int, key: MonthKey, months) -> SpendingLedger:
    if uses_legacy_ledger(key):
        return LegacySnapshotLedger(session, user_id, months)
    return DetailedTransactionLedger(session, user_id)
