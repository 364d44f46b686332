from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    subcategories: Mapped[list["Subcategory"]] = relationship(
        "Subcategory",
        back_populates="category",
        order_by="Subcategory.display_order",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )


class Subcategory(Base, TimestampMixin):
    __tablename__ = "subcategories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="subcategories"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category_id", "name", name="uq_subcategory_user_category_name"
        ),
        Index(
            "ix_subcategories_user_category_order",
            "user_id",
            "category_id",
            "display_order",
        ),
    )


class Month(Base, TimestampMixin):
    __tablename__ = "months"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[Optional[str]] = mapped_column(String(100))

    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_month_user_year_month"),
    )

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


class MonthBudget(Base, TimestampMixin):
    __tablename__ = "month_budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    month_id: Mapped[int] = mapped_column(
        ForeignKey("months.id", ondelete="CASCADE"), nullable=False
    )
    subcategory_id: Mapped[int] = mapped_column(
        ForeignKey("subcategories.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    month: Mapped["Month"] = relationship("Month")
    subcategory: Mapped["Subcategory"] = relationship("Subcategory")

    __table_args__ = (
        UniqueConstraint(
            "month_id",
            "subcategory_id",
            "user_id",
            name="uq_month_budget_month_subcategory_user",
        ),
        Index("ix_month_budgets_user_month", "user_id", "month_id"),
    )


class MonthSubcategoryVisibility(Base, TimestampMixin):
    __tablename__ = "month_subcategory_visibility"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    month_id: Mapped[int] = mapped_column(
        ForeignKey("months.id", ondelete="CASCADE"), nullable=False
    )
    subcategory_id: Mapped[int] = mapped_column(
        ForeignKey("subcategories.id", ondelete="CASCADE"), nullable=False
    )
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    month: Mapped["Month"] = relationship("Month")
    subcategory: Mapped["Subcategory"] = relationship("Subcategory")

    __table_args__ = (
        UniqueConstraint(
            "month_id",
            "subcategory_id",
            "user_id",
            name="uq_visibility_month_subcategory_user",
        ),
        Index("ix_visibility_user_month", "user_id", "month_id"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    local_id: Mapped[Optional[str]] = mapped_column(String(64))
    occurred_at: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    subcategory_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subcategories.id", ondelete="SET NULL")
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    subcategory: Mapped[Optional["Subcategory"]] = relationship("Subcategory")

    __table_args__ = (
        UniqueConstraint("user_id", "local_id", name="uq_txn_user_local_id"),
        Index("ix_transactions_user_occurred", "user_id", "occurred_at"),
        Index(
            "ix_transactions_user_subcategory_occurred",
            "user_id",
            "subcategory_id",
            "occurred_at",
        ),
    )


class Entry(Base, TimestampMixin):
    __tablename__ = "entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    month_id: Mapped[int] = mapped_column(ForeignKey("months.id"), nullable=False)
    subcategory_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("subcategories.id", ondelete="SET NULL")
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    month: Mapped["Month"] = relationship("Month")
    subcategory: Mapped[Optional["Subcategory"]] = relationship("Subcategory")

    __table_args__ = (
        UniqueConstraint(
            "month_id",
            "subcategory_id",
            "user_id",
            name="uq_entry_month_subcategory_user",
        ),
        Index("ix_entries_user_month", "user_id", "month_id"),
    )
