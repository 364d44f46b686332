from datetime import date

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, MonthSubcategoryVisibility, Subcategory
from schemas import SubcategoryIn
from services import MonthService, TaxonomyService, VisibilityService


def _seed(session: Session) -> tuple[Category, Subcategory, Subcategory]:
    needs = Category(name="Needs")
    session.add(needs)
    session.flush()
    rent = Subcategory(category_id=needs.id, name="Rent", display_order=1)
    gym = Subcategory(category_id=needs.id, name="Gym", display_order=2)
    session.add_all([rent, gym])
    session.commit()
    return needs, rent, gym


def _flag_rows(session: Session, subcategory_id: int) -> dict[str, bool]:
    rows = session.scalars(
        select(MonthSubcategoryVisibility).where(
            MonthSubcategoryVisibility.subcategory_id == subcategory_id
        )
    ).all()
    return {row.month.key: row.is_visible for row in rows}


def test_subcategories_are_visible_without_any_flags() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, rent, gym = _seed(session)
        visibility = VisibilityService(session)

        assert visibility.resolve(2026, 5) == {rent.id: True, gym.id: True}
        assert session.scalars(select(MonthSubcategoryVisibility)).all() == []


def test_hidden_flag_rolls_over_into_later_months() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, rent, gym = _seed(session)
        visibility = VisibilityService(session)
        visibility.set_visibility(2026, 1, gym.id, False)

        assert visibility.resolve(2026, 2) == {rent.id: True, gym.id: False}
        assert [s.name for s in visibility.visible_subcategories(2026, 4)] == ["Rent"]


def test_existing_flags_are_authoritative() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, rent, gym = _seed(session)
        visibility = VisibilityService(session)
        visibility.set_visibility(2026, 1, gym.id, False)
        visibility.resolve(2026, 2)

        visibility.set_visibility(2026, 1, gym.id, True)

        assert visibility.resolve(2026, 2)[gym.id] is False


def test_new_subcategory_is_shown_from_creation_month_onwards() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        needs, rent, _ = _seed(session)
        months = MonthService(session)
        for month in (2, 4, 6):
            months.resolve(2026, month)

        sub = TaxonomyService(session).create_subcategory(
            SubcategoryIn(category_id=needs.id, name="Pets"),
            created_on=date(2026, 3, 15),
        )

        assert sub.display_order == 3
        assert months.get(2026, 3) is not None
        assert _flag_rows(session, sub.id) == {
            "2026-03": True,
            "2026-04": True,
            "2026-06": True,
        }


def test_propagation_keeps_other_flags_inherited() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        needs, rent, gym = _seed(session)
        visibility = VisibilityService(session)
        visibility.set_visibility(2026, 2, gym.id, False)
        MonthService(session).resolve(2026, 4)

        sub = TaxonomyService(session).create_subcategory(
            SubcategoryIn(category_id=needs.id, name="Pets"),
            created_on=date(2026, 3, 1),
        )

        assert visibility.resolve(2026, 4) == {
            rent.id: True,
            gym.id: False,
            sub.id: True,
        }
        assert "2026-02" not in _flag_rows(session, sub.id)


def test_propagation_returns_number_of_months_updated() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        _, rent, _ = _seed(session)
        MonthService(session).resolve(2026, 1)
        MonthService(session).resolve(2026, 8)

        updated = VisibilityService(session).propagate_new_subcategory(
            rent.id, date(2026, 5, 20)
        )

        assert updated == 2
        assert _flag_rows(session, rent.id) == {"2026-05": True, "2026-08": True}
