from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from rapidfuzz.distance import Levenshtein

from config import get_settings
from database import upsert_insert
from ledgers import RecordSource, SpendingRecord, ledger_for
from models import (
    Category,
    Entry,
    Month,
    MonthBudget,
    MonthSubcategoryVisibility,
    Subcategory,
    Transaction,
)
from periods import LEDGER_CUTOFF, MonthKey, uses_legacy_ledger
from schemas import (
    CategoryIn,
    EntryCSVRow,
    IngestTransactionIn,
    SubcategoryIn,
    SubcategoryUpdate,
    TransactionIn,
)

logger = logging.getLogger(__name__)

INCOME_CATEGORY_NAME = "Income"
_CENT = Decimal("0.01")


def get_current_user_id() -> int:
    return 1


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(_CENT)


def local_today() -> date:
    return datetime.now(ZoneInfo(get_settings().timezone)).date()


def _on_or_after(key: MonthKey):
    return or_(
        Month.year > key.year, and_(Month.year == key.year, Month.month >= key.month)
    )


def _strictly_before(key: MonthKey):
    return or_(
        Month.year < key.year, and_(Month.year == key.year, Month.month < key.month)
    )


class CategoryNotFound(ValueError):
    pass


class SubcategoryNotFound(ValueError):
    pass


class SubcategoryAmbiguous(ValueError):
    pass


class TaxonomyService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_categories(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
        )
        return self.session.scalars(stmt).all()

    def list_subcategories(
        self, category_id: Optional[int] = None
    ) -> list[Subcategory]:
        stmt = (
            select(Subcategory)
            .options(joinedload(Subcategory.category))
            .where(Subcategory.user_id == self.user_id)
            .order_by(
                Subcategory.category_id,
                Subcategory.display_order,
                Subcategory.name,
            )
        )
        if category_id is not None:
            stmt = stmt.where(Subcategory.category_id == category_id)
        return self.session.scalars(stmt).all()

    def get_category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise CategoryNotFound("Category not found")
        return category

    def get_subcategory(self, subcategory_id: int) -> Subcategory:
        sub = self.session.get(Subcategory, subcategory_id)
        if not sub or sub.user_id != self.user_id:
            raise SubcategoryNotFound("Subcategory not found")
        return sub

    def create_category(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        category = Category(user_id=self.user_id, name=data.name.strip())
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def _ensure_unique_name(
        self, category_id: int, name: str, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Subcategory).where(
            Subcategory.user_id == self.user_id,
            Subcategory.category_id == category_id,
            func.lower(Subcategory.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Subcategory.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValueError("Subcategory with this name already exists")

    def create_subcategory(
        self, data: SubcategoryIn, created_on: Optional[date] = None
    ) -> Subcategory:
        category = self.get_category(data.category_id)
        name = data.name.strip()
        self._ensure_unique_name(category.id, name)

        display_order = data.display_order
        if display_order is None:
            current_max = self.session.scalar(
                select(func.max(Subcategory.display_order)).where(
                    Subcategory.user_id == self.user_id,
                    Subcategory.category_id == category.id,
                )
            )
            display_order = (current_max or 0) + 1

        sub = Subcategory(
            user_id=self.user_id,
            category_id=category.id,
            name=name,
            display_order=display_order,
        )
        self.session.add(sub)
        self.session.commit()
        self.session.refresh(sub)

        VisibilityService(self.session, self.user_id).propagate_new_subcategory(
            sub.id, created_on or local_today()
        )
        return sub

    def update_subcategory(
        self, subcategory_id: int, data: SubcategoryUpdate
    ) -> Subcategory:
        sub = self.get_subcategory(subcategory_id)
        if data.name is not None:
            name = data.name.strip()
            self._ensure_unique_name(sub.category_id, name, exclude_id=sub.id)
            sub.name = name
        if data.display_order is not None:
            sub.display_order = data.display_order
        self.session.commit()
        self.session.refresh(sub)
        return sub

    def delete_subcategory(self, subcategory_id: int) -> None:
        sub = self.get_subcategory(subcategory_id)
        self.session.delete(sub)
        self.session.commit()

    def reorder_subcategories(self, subcategory_ids: list[int]) -> list[Subcategory]:
        subs = [self.get_subcategory(sub_id) for sub_id in subcategory_ids]
        if len({sub.id for sub in subs}) != len(subs):
            raise ValueError("Subcategory ids must be unique")
        if len({sub.category_id for sub in subs}) > 1:
            raise ValueError("Subcategories must belong to the same category")
        for index, sub in enumerate(subs, start=1):
            sub.display_order = index
        self.session.commit()
        return subs


class MonthService:
    """Month registry: one durable row per ``(user, year, month)``."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, year: int, month: int) -> Optional[Month]:
        return self.session.scalar(
            select(Month).where(
                Month.user_id == self.user_id,
                Month.year == year,
                Month.month == month,
            )
        )

    def resolve(self, year: int, month: int) -> Month:
        key = MonthKey(year, month)
        now = datetime.utcnow()
        stmt = (
            upsert_insert(self.session, Month)
            .values(
                user_id=self.user_id,
                year=key.year,
                month=key.month,
                label=None,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "year", "month"])
        )
        result = self.session.execute(stmt)
        self.session.commit()
        if result.rowcount:
            logger.info(f"month_created: user={self.user_id} key={key}")
        month_row = self.get(key.year, key.month)
        if month_row is None:
            raise RuntimeError(f"Month {key} missing after insert")
        return month_row

    def list_on_or_after(self, key: MonthKey) -> list[Month]:
        stmt = (
            select(Month)
            .where(Month.user_id == self.user_id, _on_or_after(key))
            .order_by(Month.year, Month.month)
        )
        return self.session.scalars(stmt).all()

    def list_all(self) -> list[Month]:
        stmt = (
            select(Month)
            .where(Month.user_id == self.user_id)
            .order_by(Month.year.desc(), Month.month.desc())
        )
        return self.session.scalars(stmt).all()


class _MonthRolloverService:
    """Per-month settings that are copied forward from the latest configured month.

    A month that already has rows is authoritative. An empty month inherits
    every row of the nearest earlier month that has any; copies go through an
    upsert on ``(month_id, subcategory_id, user_id)`` so concurrent or
    interrupted rollovers converge on the same rows when re-run.
    """

    model: type = MonthBudget
    copied_fields: tuple[str, ...] = ()
    log_event = "rollover"

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.months = MonthService(session, self.user_id)

    def rows_for_month(self, month_id: int) -> list:
        stmt = (
            select(self.model)
            .where(self.model.user_id == self.user_id, self.model.month_id == month_id)
            .order_by(self.model.subcategory_id)
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).all()

    def latest_configured_month_before(self, key: MonthKey) -> Optional[Month]:
        stmt = (
            select(Month)
            .join(self.model, self.model.month_id == Month.id)
            .where(
                Month.user_id == self.user_id,
                self.model.user_id == self.user_id,
                _strictly_before(key),
            )
            .order_by(Month.year.desc(), Month.month.desc())
            .limit(1)
        )
        return self.session.scalars(stmt).first()

    def rollover(self, year: int, month: int) -> tuple[Month, list]:
        key = MonthKey(year, month)
        target = self.months.resolve(key.year, key.month)
        existing = self.rows_for_month(target.id)
        if existing:
            return target, existing

        source = self.latest_configured_month_before(key)
        if source is None:
            return target, []

        now = datetime.utcnow()
        values = [
            {
                "user_id": self.user_id,
                "month_id": target.id,
                "subcategory_id": row.subcategory_id,
                "created_at": now,
                "updated_at": now,
                **{name: getattr(row, name) for name in self.copied_fields},
            }
            for row in self.rows_for_month(source.id)
        ]
        stmt = (
            upsert_insert(self.session, self.model)
            .values(values)
            .on_conflict_do_nothing(
                index_elements=["month_id", "subcategory_id", "user_id"]
            )
        )
        self.session.execute(stmt)
        self.session.commit()
        logger.info(
            f"{self.log_event}: user={self.user_id} target={key} "
            f"source={source.key} copied={len(values)}"
        )
        return target, self.rows_for_month(target.id)

    def _upsert_row(self, month_id: int, subcategory_id: int, **fields) -> None:
        now = datetime.utcnow()
        stmt = (
            upsert_insert(self.session, self.model)
            .values(
                user_id=self.user_id,
                month_id=month_id,
                subcategory_id=subcategory_id,
                created_at=now,
                updated_at=now,
                **fields,
            )
            .on_conflict_do_update(
                index_elements=["month_id", "subcategory_id", "user_id"],
                set_={**fields, "updated_at": now},
            )
        )
        self.session.execute(stmt)

    def _get_row(self, month_id: int, subcategory_id: int):
        return self.session.scalars(
            select(self.model)
            .where(
                self.model.user_id == self.user_id,
                self.model.month_id == month_id,
                self.model.subcategory_id == subcategory_id,
            )
            .execution_options(populate_existing=True)
        ).one()


class BudgetService(_MonthRolloverService):
    model = MonthBudget
    copied_fields = ("amount_cents",)
    log_event = "budget_rollover"

    def resolve(self, year: int, month: int) -> list[MonthBudget]:
        _, rows = self.rollover(year, month)
        return rows

    def budgets_by_subcategory(self, year: int, month: int) -> dict[int, int]:
        rows = self.resolve(year, month)
        return {row.subcategory_id: row.amount_cents for row in rows}

    def set_budget(
        self, year: int, month: int, subcategory_id: int, amount_cents: int
    ) -> MonthBudget:
        if amount_cents < 0:
            raise ValueError("Budget amount must not be negative")
        TaxonomyService(self.session, self.user_id).get_subcategory(subcategory_id)
        target, _ = self.rollover(year, month)
        self._upsert_row(target.id, subcategory_id, amount_cents=amount_cents)
        self.session.commit()
        return self._get_row(target.id, subcategory_id)

    def budgets_at_year_end(self, year: int) -> dict[int, int]:
        """Budgets of the latest configured month up to December, read-only."""
        source = self.latest_configured_month_before(MonthKey(year, 12).shift(1))
        if source is None:
            return {}
        return {
            row.subcategory_id: row.amount_cents
            for row in self.rows_for_month(source.id)
        }


class VisibilityService(_MonthRolloverService):
    model = MonthSubcategoryVisibility
    copied_fields = ("is_visible",)
    log_event = "visibility_rollover"

    def resolve(self, year: int, month: int) -> dict[int, bool]:
        _, rows = self.rollover(year, month)
        flags = {row.subcategory_id: row.is_visible for row in rows}
        subs = TaxonomyService(self.session, self.user_id).list_subcategories()
        return {sub.id: flags.get(sub.id, True) for sub in subs}

    def visible_subcategories(self, year: int, month: int) -> list[Subcategory]:
        flags = self.resolve(year, month)
        subs = TaxonomyService(self.session, self.user_id).list_subcategories()
        return [sub for sub in subs if flags.get(sub.id, True)]

    def set_visibility(
        self, year: int, month: int, subcategory_id: int, is_visible: bool
    ) -> MonthSubcategoryVisibility:
        TaxonomyService(self.session, self.user_id).get_subcategory(subcategory_id)
        target, _ = self.rollover(year, month)
        self._upsert_row(target.id, subcategory_id, is_visible=is_visible)
        self.session.commit()
        return self._get_row(target.id, subcategory_id)

    def propagate_new_subcategory(self, subcategory_id: int, created_on: date) -> int:
        """Show a new subcategory from its creation month onwards.

        Earlier months are left alone. Each target month is rolled over first
        so that gaining a row for the new subcategory does not stop it from
        inheriting the other subcategories' flags.
        """
        start = MonthKey.for_date(created_on)
        self.months.resolve(start.year, start.month)
        months = self.months.list_on_or_after(start)
        for month_row in months:
            self.rollover(month_row.year, month_row.month)
            self._upsert_row(month_row.id, subcategory_id, is_visible=True)
        self.session.commit()
        logger.info(
            f"subcategory_propagated: user={self.user_id} "
            f"subcategory={subcategory_id} from={start} months={len(months)}"
        )
        return len(months)


@dataclass
class SubcategoryTotal:
    subcategory_id: int
    name: str
    category_id: int
    category_name: str
    total_cents: int = 0

    @property
    def total(self) -> Decimal:
        return cents_to_decimal(self.total_cents)


@dataclass
class CategoryTotal:
    category_id: int
    name: str
    total_cents: int = 0

    @property
    def total(self) -> Decimal:
        return cents_to_decimal(self.total_cents)


@dataclass
class SpendingSummary:
    key: MonthKey
    source: RecordSource
    categories: list[CategoryTotal]
    subcategories: list[SubcategoryTotal]
    dropped_records: int = 0

    def by_category(self) -> dict[str, CategoryTotal]:
        return {row.name: row for row in self.categories}

    def by_subcategory(self) -> dict[tuple[str, str], SubcategoryTotal]:
        """Keyed by ``(category name, subcategory name)``."""
        return {(row.category_name, row.name): row for row in self.subcategories}


@dataclass
class OverviewLine:
    subcategory_id: int
    name: str
    budget_cents: int
    spent_cents: int
    is_visible: bool

    @property
    def remaining_cents(self) -> int:
        return self.budget_cents - self.spent_cents


@dataclass
class OverviewCategory:
    category_id: int
    name: str
    lines: list[OverviewLine] = field(default_factory=list)

    @property
    def budget_cents(self) -> int:
        return sum(line.budget_cents for line in self.lines)

    @property
    def spent_cents(self) -> int:
        return sum(line.spent_cents for line in self.lines)


@dataclass
class MonthOverview:
    month: Month
    source: RecordSource
    categories: list[OverviewCategory]
    income_cents: int
    total_spent_cents: int
    total_budget_cents: int

    @property
    def remaining_cents(self) -> int:
        return self.income_cents - self.total_spent_cents

    @property
    def budget_remaining_cents(self) -> int:
        return self.total_budget_cents - self.total_spent_cents


@dataclass
class SubcategoryAverage:
    subcategory_id: int
    name: str
    category_id: int
    category_name: str
    total_cents: int
    budget_cents: int

    @property
    def average(self) -> Decimal:
        return (Decimal(self.total_cents) / 100 / 12).quantize(_CENT)


@dataclass
class AnnualAverages:
    year: int
    subcategories: list[SubcategoryAverage]

    def category_averages(self) -> dict[str, Decimal]:
        totals: dict[str, int] = {}
        for row in self.subcategories:
            name = row.category_name
            totals[name] = totals.get(name, 0) + row.total_cents
        return {
            name: (Decimal(cents) / 100 / 12).quantize(_CENT)
            for name, cents in totals.items()
        }


class SpendingService:
    """Spending totals per category and subcategory for one month."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.months = MonthService(session, self.user_id)
        self.taxonomy = TaxonomyService(session, self.user_id)

    def month_records(self, year: int, month: int) -> list[SpendingRecord]:
        key = MonthKey(year, month)
        return ledger_for(self.session, self.user_id, key, self.months).records(key)

    def aggregate(self, year: int, month: int) -> SpendingSummary:
        key = MonthKey(year, month)
        categories = self.taxonomy.list_categories()
        category_totals = {
            cat.id: CategoryTotal(category_id=cat.id, name=cat.name)
            for cat in categories
        }
        sub_totals: dict[int, SubcategoryTotal] = {}
        for sub in self.taxonomy.list_subcategories():
            parent = category_totals.get(sub.category_id)
            if parent is None:
                continue
            sub_totals[sub.id] = SubcategoryTotal(
                subcategory_id=sub.id,
                name=sub.name,
                category_id=parent.category_id,
                category_name=parent.name,
            )

        ledger = ledger_for(self.session, self.user_id, key, self.months)
        dropped = 0
        for record in ledger.records(key):
            line = sub_totals.get(record.subcategory_id)
            if line is None:
                dropped += 1
                continue
            line.total_cents += record.amount_cents

        for line in sub_totals.values():
            category_totals[line.category_id].total_cents += line.total_cents

        if dropped:
            logger.debug(
                f"spending_dropped: user={self.user_id} key={key} "
                f"source={ledger.source} records={dropped}"
            )
        return SpendingSummary(
            key=key,
            source=ledger.source,
            categories=list(category_totals.values()),
            subcategories=list(sub_totals.values()),
            dropped_records=dropped,
        )

    def month_overview(self, year: int, month: int) -> MonthOverview:
        month_row = self.months.resolve(year, month)
        budgets = BudgetService(self.session, self.user_id).budgets_by_subcategory(
            year, month
        )
        visibility = VisibilityService(self.session, self.user_id).resolve(
            year, month
        )
        spending = self.aggregate(year, month)

        grouped = {
            row.category_id: OverviewCategory(row.category_id, row.name)
            for row in spending.categories
        }
        for row in spending.subcategories:
            grouped[row.category_id].lines.append(
                OverviewLine(
                    subcategory_id=row.subcategory_id,
                    name=row.name,
                    budget_cents=budgets.get(row.subcategory_id, 0),
                    spent_cents=row.total_cents,
                    is_visible=visibility.get(row.subcategory_id, True),
                )
            )

        categories = list(grouped.values())
        income = sum(
            c.spent_cents for c in categories if c.name == INCOME_CATEGORY_NAME
        )
        expenses = [c for c in categories if c.name != INCOME_CATEGORY_NAME]
        return MonthOverview(
            month=month_row,
            source=spending.source,
            categories=categories,
            income_cents=income,
            total_spent_cents=sum(c.spent_cents for c in expenses),
            total_budget_cents=sum(c.budget_cents for c in expenses),
        )

    def annual_averages(self, year: int) -> AnnualAverages:
        totals: dict[int, SubcategoryTotal] = {}
        for month in range(1, 13):
            for row in self.aggregate(year, month).subcategories:
                acc = totals.setdefault(
                    row.subcategory_id,
                    SubcategoryTotal(
                        subcategory_id=row.subcategory_id,
                        name=row.name,
                        category_id=row.category_id,
                        category_name=row.category_name,
                    ),
                )
                acc.total_cents += row.total_cents

        budgets = BudgetService(self.session, self.user_id).budgets_at_year_end(year)
        return AnnualAverages(
            year=year,
            subcategories=[
                SubcategoryAverage(
                    subcategory_id=row.subcategory_id,
                    name=row.name,
                    category_id=row.category_id,
                    category_name=row.category_name,
                    total_cents=row.total_cents,
                    budget_cents=budgets.get(row.subcategory_id, 0),
                )
                for row in totals.values()
            ],
        )


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _by_local_id(self, local_id: str) -> Optional[Transaction]:
        return self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.local_id == local_id,
            )
        )

    def record(self, data: TransactionIn) -> Transaction:
        TaxonomyService(self.session, self.user_id).get_subcategory(data.subcategory_id)
        if data.local_id:
            existing = self._by_local_id(data.local_id)
            if existing:
                return existing

        txn = Transaction(
            user_id=self.user_id,
            local_id=data.local_id,
            occurred_at=data.occurred_at,
            amount_cents=data.amount_cents,
            subcategory_id=data.subcategory_id,
            notes=(data.notes or "").strip() or None,
        )
        self.session.add(txn)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            existing = self._by_local_id(data.local_id) if data.local_id else None
            if existing is None:
                raise
            return existing
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise ValueError("Transaction not found")
        return txn

    def _list_stmt(self):
        return (
            select(Transaction)
            .options(
                joinedload(Transaction.subcategory).joinedload(Subcategory.category)
            )
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        )

    def list_for_month(self, year: int, month: int) -> list[Transaction]:
        key = MonthKey(year, month)
        stmt = self._list_stmt().where(
            Transaction.occurred_at.between(key.first_day, key.last_day)
        )
        return self.session.scalars(stmt).all()

    def list_all(self) -> list[Transaction]:
        return self.session.scalars(self._list_stmt()).all()

    def available_months(self, today: Optional[date] = None) -> list[str]:
        keys: set[MonthKey] = set()
        dates = self.session.scalars(
            select(Transaction.occurred_at)
            .where(Transaction.user_id == self.user_id)
            .distinct()
        ).all()
        keys.update(MonthKey.for_date(value) for value in dates)
        for month_row in MonthService(self.session, self.user_id).list_all():
            keys.add(MonthKey(month_row.year, month_row.month))
        keys.add(MonthKey.for_date(today or local_today()))
        return [str(key) for key in sorted(keys, reverse=True)]


class IngestService:
    """Records a transaction whose subcategory is given by name."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def match_subcategory(self, name: str) -> Subcategory:
        raw = name.strip()
        input_lower = raw.lower()
        subs = TaxonomyService(self.session, self.user_id).list_subcategories()

        exact = [sub for sub in subs if sub.name.strip().lower() == input_lower]
        if len(exact) == 1:
            return exact[0]
        if len(exact) > 1:
            options = ", ".join(sorted(f"{s.category.name}/{s.name}" for s in exact))
            raise SubcategoryAmbiguous(
                f"Subcategory '{raw}' is ambiguous; matches: {options}"
            )

        best_distance: Optional[int] = None
        best: list[Subcategory] = []
        for sub in subs:
            dist = int(Levenshtein.distance(input_lower, sub.name.strip().lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [sub]
            elif dist == best_distance:
                best.append(sub)

        if best_distance is None or best_distance > 1:
            raise SubcategoryNotFound(f"Subcategory '{raw}' not found")
        if len(best) > 1:
            options = ", ".join(sorted({s.name for s in best}))
            raise SubcategoryAmbiguous(
                f"Subcategory '{raw}' is ambiguous; matches: {options}"
            )
        return best[0]

    def ingest(self, data: IngestTransactionIn) -> Transaction:
        sub = self.match_subcategory(data.subcategory)
        txn_in = TransactionIn(
            occurred_at=data.date or local_today(),
            amount_cents=data.amount_cents,
            subcategory_id=sub.id,
            notes=data.notes,
            local_id=data.local_id,
        )
        return TransactionService(self.session, self.user_id).record(txn_in)


class LegacyEntryService:
    """Monthly snapshot entries for periods before the ledger cutoff."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.months = MonthService(session, self.user_id)

    def record_entry(
        self, year: int, month: int, subcategory_id: int, amount_cents: int
    ) -> Entry:
        key = MonthKey(year, month)
        if not uses_legacy_ledger(key):
            raise ValueError(
                f"Snapshot entries only cover months before {LEDGER_CUTOFF}, got {key}"
            )
        TaxonomyService(self.session, self.user_id).get_subcategory(subcategory_id)
        month_row = self.months.resolve(key.year, key.month)
        now = datetime.utcnow()
        stmt = (
            upsert_insert(self.session, Entry)
            .values(
                user_id=self.user_id,
                month_id=month_row.id,
                subcategory_id=subcategory_id,
                amount_cents=amount_cents,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_update(
                index_elements=["month_id", "subcategory_id", "user_id"],
                set_={"amount_cents": amount_cents, "updated_at": now},
            )
        )
        self.session.execute(stmt)
        self.session.commit()
        return self.session.scalars(
            select(Entry)
            .where(
                Entry.user_id == self.user_id,
                Entry.month_id == month_row.id,
                Entry.subcategory_id == subcategory_id,
            )
            .execution_options(populate_existing=True)
        ).one()

    def import_rows(self, rows: list[EntryCSVRow]) -> tuple[int, list[str]]:
        taxonomy = TaxonomyService(self.session, self.user_id)
        lookup = {
            (sub.category.name.lower(), sub.name.lower()): sub.id
            for sub in taxonomy.list_subcategories()
        }
        imported = 0
        errors: list[str] = []
        for idx, row in enumerate(rows, start=1):
            sub_id = lookup.get((row.category.lower(), row.subcategory.lower()))
            if sub_id is None:
                errors.append(
                    f"Row {idx}: unknown subcategory {row.category}/{row.subcategory}"
                )
                continue
            try:
                self.record_entry(row.year, row.month, sub_id, row.amount_cents)
            except ValueError as exc:
                errors.append(f"Row {idx}: {exc}")
                continue
            imported += 1
        logger.info(
            f"entries_imported: user={self.user_id} "
            f"rows={imported} errors={len(errors)}"
        )
        return imported, errors
