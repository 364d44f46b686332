import threading
from datetime import date

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from database import Base, build_engine
from models import Category, Month, MonthBudget, Subcategory
from periods import (
    LEDGER_CUTOFF,
    InvalidMonthKey,
    MonthKey,
    parse_month_key,
    uses_legacy_ledger,
)
from schemas import TransactionIn
from services import BudgetService, MonthService, TransactionService


def _month_count(session: Session, year: int, month: int) -> int:
    return session.execute(
        select(func.count(Month.id)).where(Month.year == year, Month.month == month)
    ).scalar_one()


def test_parse_month_key_and_bounds() -> None:
    key = parse_month_key("2024-02")
    assert key == MonthKey(2024, 2)
    assert str(key) == "2024-02"
    assert key.first_day == date(2024, 2, 1)
    assert key.last_day == date(2024, 2, 29)
    assert MonthKey(2025, 12).shift(1) == MonthKey(2026, 1)
    assert MonthKey(2026, 1).shift(-1) == MonthKey(2025, 12)


@pytest.mark.parametrize("raw", ["2025-13", "2025-00", "25-01", "2025/01", ""])
def test_parse_month_key_rejects_malformed_keys(raw: str) -> None:
    with pytest.raises(InvalidMonthKey):
        parse_month_key(raw)


def test_ledger_cutoff_splits_at_december_2025() -> None:
    assert LEDGER_CUTOFF == MonthKey(2025, 12)
    assert uses_legacy_ledger(MonthKey(2025, 11))
    assert uses_legacy_ledger(MonthKey(2019, 12))
    assert not uses_legacy_ledger(MonthKey(2025, 12))
    assert not uses_legacy_ledger(MonthKey(2026, 1))


def test_resolve_month_creates_once_with_null_label() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        months = MonthService(session)
        assert months.get(2026, 4) is None

        first = months.resolve(2026, 4)
        second = months.resolve(2026, 4)

        assert first.id == second.id
        assert first.label is None
        assert first.key == "2026-04"
        assert _month_count(session, 2026, 4) == 1


def test_resolve_month_rejects_invalid_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        with pytest.raises(InvalidMonthKey):
            MonthService(session).resolve(2026, 13)


def test_months_are_scoped_per_user() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        mine = MonthService(session, user_id=1).resolve(2026, 4)
        theirs = MonthService(session, user_id=2).resolve(2026, 4)
        assert mine.id != theirs.id
        assert _month_count(session, 2026, 4) == 2


def _file_sessionmaker(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'budget.db'}")
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def _run_concurrently(factory, action, workers: int = 2) -> list:
    barrier = threading.Barrier(workers)
    results: list = []
    errors: list[BaseException] = []

    def worker() -> None:
        with factory() as session:
            try:
                barrier.wait()
                results.append(action(session))
            except BaseException as exc:  # surfaced to the test thread below
                errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert errors == []
    return results


def test_concurrent_resolution_yields_one_month_row(tmp_path) -> None:
    factory = _file_sessionmaker(tmp_path)

    ids = _run_concurrently(
        factory, lambda session: MonthService(session).resolve(2026, 4).id
    )

    assert len(set(ids)) == 1
    with factory() as session:
        assert _month_count(session, 2026, 4) == 1


def test_concurrent_first_access_copies_budgets_once(tmp_path) -> None:
    factory = _file_sessionmaker(tmp_path)
    with factory() as session:
        needs = Category(name="Needs")
        session.add(needs)
        session.flush()
        rent = Subcategory(category_id=needs.id, name="Rent", display_order=1)
        food = Subcategory(category_id=needs.id, name="Groceries", display_order=2)
        session.add_all([rent, food])
        session.commit()
        budgets = BudgetService(session)
        budgets.set_budget(2026, 1, rent.id, 150_000)
        budgets.set_budget(2026, 1, food.id, 40_000)

    _run_concurrently(
        factory, lambda session: len(BudgetService(session).resolve(2026, 2))
    )

    with factory() as session:
        february = MonthService(session).get(2026, 2)
        rows = session.scalars(
            select(MonthBudget).where(MonthBudget.month_id == february.id)
        ).all()
        assert sorted(row.amount_cents for row in rows) == [40_000, 150_000]


def test_available_months_merge_ledger_and_registry() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        needs = Category(name="Needs")
        session.add(needs)
        session.flush()
        rent = Subcategory(category_id=needs.id, name="Rent", display_order=1)
        session.add(rent)
        session.commit()
        TransactionService(session).record(
            TransactionIn(
                occurred_at=date(2026, 1, 3), amount_cents=100, subcategory_id=rent.id
            )
        )
        MonthService(session).resolve(2025, 11)

        months = TransactionService(session).available_months(today=date(2026, 3, 9))

        assert months == ["2026-03", "2026-01", "2025-11"]
