from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from database import Base
from ledgers import (
    ENTRY_SOURCE,
    TRANSACTION_SOURCE,
    DetailedTransactionLedger,
    LegacySnapshotLedger,
    ledger_for,
)
from models import Category, Entry, Subcategory
from periods import MonthKey
from schemas import TransactionIn
from services import (
    BudgetService,
    LegacyEntryService,
    MonthService,
    SpendingService,
    TransactionService,
)


GROCERIES = ("Needs", "Groceries")


def make_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


def _category(session: Session, name: str, *subs: str) -> list[Subcategory]:
    category = Category(name=name)
    session.add(category)
    session.flush()
    rows = [
        Subcategory(category_id=category.id, name=sub, display_order=idx)
        for idx, sub in enumerate(subs, start=1)
    ]
    session.add_all(rows)
    session.commit()
    return rows


def _spend(
    session: Session, sub: Subcategory, occurred_at: date, amount_cents: int
) -> None:
    TransactionService(session).record(
        TransactionIn(
            occurred_at=occurred_at, amount_cents=amount_cents, subcategory_id=sub.id
        )
    )


def test_ledger_is_selected_by_month() -> None:
    session = make_session()
    (groceries,) = _category(session, "Needs", "Groceries")
    LegacyEntryService(session).record_entry(2025, 11, groceries.id, 12_000)
    _spend(session, groceries, date(2025, 11, 20), 999)
    _spend(session, groceries, date(2025, 12, 3), 4_550)

    december = MonthService(session).resolve(2025, 12)
    session.add(
        Entry(month_id=december.id, subcategory_id=groceries.id, amount_cents=7)
    )
    session.commit()

    spending = SpendingService(session)
    november = spending.aggregate(2025, 11)
    assert november.source == ENTRY_SOURCE
    assert november.by_subcategory()[GROCERIES].total == Decimal("120.00")

    december_summary = spending.aggregate(2025, 12)
    assert december_summary.source == TRANSACTION_SOURCE
    assert december_summary.by_subcategory()[GROCERIES].total == Decimal("45.50")


def test_category_totals_equal_sum_of_subcategories() -> None:
    session = make_session()
    rent, groceries = _category(session, "Needs", "Rent", "Groceries")
    (cinema,) = _category(session, "Wants", "Cinema")
    _category(session, "Savings", "Emergency")
    _spend(session, rent, date(2026, 2, 1), 140_000)
    _spend(session, groceries, date(2026, 2, 3), 4_550)
    _spend(session, groceries, date(2026, 2, 17), 6_125)
    _spend(session, cinema, date(2026, 2, 14), 1_800)

    summary = SpendingService(session).aggregate(2026, 2)

    for category in summary.categories:
        parts = [
            row.total_cents
            for row in summary.subcategories
            if row.category_id == category.category_id
        ]
        assert category.total_cents == sum(parts)
    by_category = summary.by_category()
    assert by_category["Needs"].total == Decimal("1506.75")
    assert by_category["Wants"].total == Decimal("18.00")
    assert by_category["Savings"].total == Decimal("0.00")
    assert summary.by_subcategory()[("Savings", "Emergency")].total_cents == 0


def test_totals_are_exact_decimals() -> None:
    session = make_session()
    (coffee,) = _category(session, "Wants", "Coffee")
    _spend(session, coffee, date(2026, 1, 5), 10)
    _spend(session, coffee, date(2026, 1, 6), 20)

    summary = SpendingService(session).aggregate(2026, 1)
    total = summary.by_subcategory()[("Wants", "Coffee")].total

    assert total == Decimal("0.30")
    assert str(total) == "0.30"


def test_records_for_deleted_subcategories_are_dropped() -> None:
    session = make_session()
    rent, groceries = _category(session, "Needs", "Rent", "Groceries")
    _spend(session, rent, date(2026, 3, 1), 140_000)
    _spend(session, groceries, date(2026, 3, 2), 5_000)

    session.delete(groceries)
    session.commit()

    summary = SpendingService(session).aggregate(2026, 3)
    assert summary.dropped_records == 1
    assert ("Needs", "Groceries") not in summary.by_subcategory()
    assert summary.by_category()["Needs"].total_cents == 140_000


def test_snapshot_entries_stop_at_ledger_cutoff() -> None:
    session = make_session()
    (groceries,) = _category(session, "Needs", "Groceries")

    with pytest.raises(ValueError):
        LegacyEntryService(session).record_entry(2025, 12, groceries.id, 1_000)

    first = LegacyEntryService(session).record_entry(2025, 6, groceries.id, 1_000)
    second = LegacyEntryService(session).record_entry(2025, 6, groceries.id, 2_500)
    assert first.id == second.id
    assert second.amount_cents == 2_500


def test_month_records_follow_the_active_ledger() -> None:
    session = make_session()
    (groceries,) = _category(session, "Needs", "Groceries")
    LegacyEntryService(session).record_entry(2025, 11, groceries.id, 12_000)
    _spend(session, groceries, date(2025, 12, 3), 4_550)
    _spend(session, groceries, date(2025, 12, 9), 1_250)

    spending = SpendingService(session)
    november = spending.month_records(2025, 11)
    assert [(r.source, r.amount_cents) for r in november] == [(ENTRY_SOURCE, 12_000)]

    december = spending.month_records(2025, 12)
    assert [r.occurred_at for r in december] == [date(2025, 12, 9), date(2025, 12, 3)]


def test_month_overview_merges_budgets_and_income() -> None:
    session = make_session()
    (salary,) = _category(session, "Income", "Salary")
    rent, groceries = _category(session, "Needs", "Rent", "Groceries")
    BudgetService(session).set_budget(2026, 1, rent.id, 150_000)
    _spend(session, salary, date(2026, 1, 25), 500_000)
    _spend(session, rent, date(2026, 1, 1), 140_000)

    overview = SpendingService(session).month_overview(2026, 1)

    assert overview.month.key == "2026-01"
    assert overview.income_cents == 500_000
    assert overview.total_spent_cents == 140_000
    assert overview.total_budget_cents == 150_000
    assert overview.remaining_cents == 360_000
    assert overview.budget_remaining_cents == 10_000
    needs = next(cat for cat in overview.categories if cat.name == "Needs")
    lines = {line.name: line for line in needs.lines}
    assert lines["Rent"].remaining_cents == 10_000
    assert lines["Groceries"].budget_cents == 0
    assert lines["Groceries"].is_visible is True


def test_annual_averages_divide_by_twelve() -> None:
    session = make_session()
    (salary,) = _category(session, "Income", "Salary")
    (rent,) = _category(session, "Needs", "Rent")
    _spend(session, rent, date(2026, 1, 1), 120_000)
    _spend(session, rent, date(2026, 2, 1), 120_000)
    _spend(session, rent, date(2027, 1, 1), 999_999)
    BudgetService(session).set_budget(2026, 3, rent.id, 150_000)

    averages = SpendingService(session).annual_averages(2026)

    rows = {row.name: row for row in averages.subcategories}
    assert rows["Rent"].average == Decimal("200.00")
    assert rows["Rent"].budget_cents == 150_000
    assert rows["Salary"].average == Decimal("0.00")
    assert averages.category_averages() == {
        "Income": Decimal("0.00"),
        "Needs": Decimal("200.00"),
    }


def test_same_named_subcategories_keep_separate_totals() -> None:
    session = make_session()
    (needs_other,) = _category(session, "Needs", "Other")
    (wants_other,) = _category(session, "Wants", "Other")
    _spend(session, needs_other, date(2026, 2, 5), 1_000)
    _spend(session, wants_other, date(2026, 2, 6), 2_500)

    summary = SpendingService(session).aggregate(2026, 2)

    by_subcategory = summary.by_subcategory()
    assert len(by_subcategory) == 2
    assert by_subcategory[("Needs", "Other")].total == Decimal("10.00")
    assert by_subcategory[("Wants", "Other")].total == Decimal("25.00")
    for name, category in summary.by_category().items():
        listed = [
            row.total_cents
            for (category_name, _), row in by_subcategory.items()
            if category_name == name
        ]
        assert category.total_cents == sum(listed)


def test_ledger_for_picks_source_by_cutoff() -> None:
    session = make_session()
    months = MonthService(session)

    legacy = ledger_for(session, 1, MonthKey(2025, 11), months)
    detailed = ledger_for(session, 1, MonthKey(2025, 12), months)

    assert isinstance(legacy, LegacySnapshotLedger)
    assert legacy.source == ENTRY_SOURCE == "entry"
    assert isinstance(detailed, DetailedTransactionLedger)
    assert detailed.source == TRANSACTION_SOURCE == "transaction"
