from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from errors import NotFoundError, StoreIntegrityError, ValidationError
from models import (
    BUDGET_AMOUNT_KEY,
    CYCLE_START_DAY_KEY,
    Category,
    Expense,
    Setting,
    Subcategory,
)
from periods import Period, current_cycle, month_period, resolve_cycle
from schemas import (
    CategoryIn,
    CategorySummary,
    ExpenseIn,
    ExpenseView,
    PeriodSummary,
    SubcategoryIn,
)

logger = logging.getLogger(__name__)


def _commit(session: Session) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise StoreIntegrityError(str(exc.orig)) from exc


def expense_view(expense: Expense) -> ExpenseView:
    return ExpenseView(
        id=expense.id,
        amount_cents=expense.amount_cents,
        date=expense.date,
        category_id=expense.category_id,
        subcategory_id=expense.subcategory_id,
        description=expense.description,
        category_name=expense.category.name,
        category_icon=expense.category.icon,
        category_color=expense.category.color,
        subcategory_name=expense.subcategory.name if expense.subcategory else None,
    )


@dataclass
class ExpenseFilters:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    search: Optional[str] = None


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        stmt = select(Category).order_by(Category.is_default.desc(), Category.name)
        return list(self.session.scalars(stmt).all())

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFoundError("Category not found")
        return category

    def _ensure_unique_name(self, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(Category).where(func.lower(Category.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise ValidationError("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        self._ensure_unique_name(name)
        category = Category(
            name=name, icon=data.icon, color=data.color, is_default=False
        )
        self.session.add(category)
        _commit(self.session)
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        name = data.name.strip()
        self._ensure_unique_name(name, exclude_id=category.id)
        category.name = name
        category.icon = data.icon
        category.color = data.color
        _commit(self.session)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        if category.is_default:
            raise ValidationError("Cannot delete default category")
        in_use = self.session.execute(
            select(func.count(Expense.id)).where(Expense.category_id == category.id)
        ).scalar_one()
        if in_use:
            raise ValidationError("Category still has expenses")
        self.session.delete(category)
        _commit(self.session)
        logger.info(f"category_deleted: id={category_id}")


class SubcategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_for_category(self, category_id: int) -> list[Subcategory]:
        CategoryService(self.session).get(category_id)
        stmt = (
            select(Subcategory)
            .where(Subcategory.category_id == category_id)
            .order_by(Subcategory.name)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, subcategory_id: int) -> Subcategory:
        subcategory = self.session.get(Subcategory, subcategory_id)
        if not subcategory:
            raise NotFoundError("Subcategory not found")
        return subcategory

    def create(self, data: SubcategoryIn) -> Subcategory:
        category = CategoryService(self.session).get(data.category_id)
        name = data.name.strip()
        existing = self.session.scalar(
            select(Subcategory).where(
                Subcategory.category_id == category.id,
                func.lower(Subcategory.name) == name.lower(),
            )
        )
        if existing:
            raise ValidationError("Subcategory with this name already exists")
        subcategory = Subcategory(category_id=category.id, name=name)
        self.session.add(subcategory)
        _commit(self.session)
        self.session.refresh(subcategory)
        return subcategory

    def delete(self, subcategory_id: int) -> None:
        subcategory = self.get(subcategory_id)
        in_use = self.session.execute(
            select(func.count(Expense.id)).where(
                Expense.subcategory_id == subcategory.id
            )
        ).scalar_one()
        if in_use:
            raise ValidationError("Subcategory still has expenses")
        self.session.delete(subcategory)
        _commit(self.session)


class ExpenseService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _validate_refs(self, data: ExpenseIn) -> None:
        category = self.session.get(Category, data.category_id)
        if not category:
            raise ValidationError("Category not found")
        if data.subcategory_id is not None:
            subcategory = self.session.get(Subcategory, data.subcategory_id)
            if not subcategory:
                raise ValidationError("Subcategory not found")
            if subcategory.category_id != category.id:
                raise ValidationError("Subcategory does not belong to category")

    def _base_query(self):
        return select(Expense).options(
            joinedload(Expense.category), joinedload(Expense.subcategory)
        )

    def create(self, data: ExpenseIn) -> Expense:
        self._validate_refs(data)
        expense = Expense(
            amount_cents=data.amount_cents,
            date=data.date,
            category_id=data.category_id,
            subcategory_id=data.subcategory_id,
            description=data.description,
        )
        self.session.add(expense)
        _commit(self.session)
        return self.get(expense.id)

    def get(self, expense_id: int) -> Expense:
        expense = self.session.scalar(
            self._base_query().where(Expense.id == expense_id)
        )
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        self._validate_refs(data)
        expense.amount_cents = data.amount_cents
        expense.date = data.date
        expense.category_id = data.category_id
        expense.subcategory_id = data.subcategory_id
        expense.description = data.description
        _commit(self.session)
        self.session.expire(expense)
        return self.get(expense_id)

    def delete(self, expense_id: int) -> None:
        expense = self.session.get(Expense, expense_id)
        if not expense:
            raise NotFoundError("Expense not found")
        self.session.delete(expense)
        _commit(self.session)

    def list(self, filters: Optional[ExpenseFilters] = None) -> list[Expense]:
        filters = filters or ExpenseFilters()
        stmt = self._base_query()
        if filters.date_from:
            stmt = stmt.where(Expense.date >= filters.date_from)
        if filters.date_to:
            stmt = stmt.where(Expense.date <= filters.date_to)
        if filters.category_id:
            stmt = stmt.where(Expense.category_id == filters.category_id)
        if filters.subcategory_id:
            stmt = stmt.where(Expense.subcategory_id == filters.subcategory_id)
        if filters.search:
            stmt = stmt.where(Expense.description.ilike(f"%{filters.search}%"))
        stmt = stmt.order_by(Expense.date.desc(), Expense.created_at.desc())
        return list(self.session.scalars(stmt).unique().all())


class SettingService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, key: str) -> Optional[str]:
        setting = self.session.get(Setting, key)
        return setting.value if setting else None

    def set(self, key: str, value: str) -> None:
        if key == CYCLE_START_DAY_KEY:
            try:
                day = int(value)
            except ValueError as exc:
                raise ValidationError("Cycle start day must be a number") from exc
            if not 1 <= day <= 31:
                raise ValidationError("Cycle start day must be between 1 and 31")
        elif key == BUDGET_AMOUNT_KEY:
            if not value.isdigit():
                raise ValidationError("Budget must be a non-negative amount in cents")
        setting = self.session.get(Setting, key)
        if setting:
            setting.value = value
        else:
            self.session.add(Setting(key=key, value=value))
        _commit(self.session)

    def delete(self, key: str) -> bool:
        setting = self.session.get(Setting, key)
        if not setting:
            return False
        self.session.delete(setting)
        _commit(self.session)
        return True

    def all(self) -> dict[str, str]:
        rows = self.session.scalars(select(Setting).order_by(Setting.key)).all()
        return {row.key: row.value for row in rows}

    def get_int(self, key: str, default: int) -> int:
        raw = self.get(key)
        if raw is None or not raw.strip():
            return default
        try:
            return int(raw)
        except ValueError as exc:
            raise ValidationError(f"Setting {key} is not an integer") from exc


class ReportService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def totals(self, start: date, end: date) -> tuple[int, int]:
        row = self.session.execute(
            select(
                func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
                func.count(Expense.id).label("count"),
            ).where(Expense.date.between(start, end))
        ).one()
        return int(row.total or 0), int(row.count or 0)

    def category_breakdown(
        self, start: date, end: date, *, period_total: Optional[int] = None
    ) -> list[CategorySummary]:
        if period_total is None:
            period_total, _ = self.totals(start, end)

        total = func.coalesce(func.sum(Expense.amount_cents), 0)
        stmt = (
            select(
                Category.id.label("category_id"),
                Category.name.label("name"),
                Category.icon.label("icon"),
                Category.color.label("color"),
                total.label("total"),
                func.count(Expense.id).label("count"),
            )
            .outerjoin(
                Expense,
                and_(
                    Expense.category_id == Category.id,
                    Expense.date.between(start, end),
                ),
            )
            .group_by(Category.id, Category.name, Category.icon, Category.color)
            .having(total > 0)
            .order_by(total.desc(), Category.id)
        )
        breakdown = []
        for row in self.session.execute(stmt).all():
            amount = int(row.total or 0)
            percent = (amount / period_total * 100) if period_total else 0
            breakdown.append(
                CategorySummary(
                    category_id=row.category_id,
                    category_name=row.name,
                    category_icon=row.icon,
                    category_color=row.color,
                    total_cents=amount,
                    count=int(row.count or 0),
                    percentage=min(percent, 100.0),
                )
            )
        return breakdown

    def summarize(self, period: Period) -> PeriodSummary:
        total, count = self.totals(period.start, period.end)
        return PeriodSummary(
            start=period.start,
            end=period.end,
            total_cents=total,
            count=count,
            by_category=self.category_breakdown(
                period.start, period.end, period_total=total
            ),
        )

    def monthly_summary(self, year: int, month: int) -> PeriodSummary:
        return self.summarize(month_period(year, month))

    def cycle_summary(self, year: int, month: int, start_day: int) -> PeriodSummary:
        if start_day == 1:
            return self.monthly_summary(year, month)
        return self.summarize(resolve_cycle(year, month, start_day))

    def configured_cycle_summary(
        self,
        year: Optional[int] = None,
        month: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> PeriodSummary:
        """Cycle summary using the stored start day.

        Without an explicit (year, month) the cycle containing ``today`` is used.
        """
        start_day = SettingService(self.session).get_int(CYCLE_START_DAY_KEY, 1)
        if year is None or month is None:
            year, month = current_cycle(today or date.today(), start_day)
        return self.cycle_summary(year, month, start_day)
