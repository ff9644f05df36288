from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import find_user_by_email, hash_password, verify_password
from models import Budget, BudgetPeriod, Category, Transaction, TransactionType, User
from schemas import (
    BudgetIn,
    BudgetPatch,
    CategoryIn,
    SignUpIn,
    TransactionIn,
    TransactionPatch,
    to_cents,
)

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: list[dict[str, str]] = [
    {"name": "Salary", "color": "#4CAF50", "icon": "briefcase"},
    {"name": "Freelance", "color": "#8BC34A", "icon": "code"},
    {"name": "Investments", "color": "#009688", "icon": "trending-up"},
    {"name": "Gifts", "color": "#E91E63", "icon": "gift"},
    {"name": "Other Income", "color": "#9C27B0", "icon": "plus-circle"},
    {"name": "Housing", "color": "#F44336", "icon": "home"},
    {"name": "Food", "color": "#FF9800", "icon": "shopping-cart"},
    {"name": "Transportation", "color": "#795548", "icon": "car"},
    {"name": "Utilities", "color": "#607D8B", "icon": "zap"},
    {"name": "Healthcare", "color": "#00BCD4", "icon": "activity"},
    {"name": "Entertainment", "color": "#673AB7", "icon": "film"},
    {"name": "Shopping", "color": "#3F51B5", "icon": "shopping-bag"},
    {"name": "Education", "color": "#2196F3", "icon": "book"},
    {"name": "Personal Care", "color": "#FF5722", "icon": "user"},
    {"name": "Debt", "color": "#F44336", "icon": "credit-card"},
    {"name": "Savings", "color": "#4CAF50", "icon": "save"},
    {"name": "Other Expenses", "color": "#9E9E9E", "icon": "more-horizontal"},
]

INCOME_CATEGORY_NAMES = frozenset(
    ["Salary", "Freelance", "Investments", "Gifts", "Other Income"]
)

UNCATEGORIZED = {"name": "Uncategorized", "color": "#9E9E9E"}
UNKNOWN_CATEGORY = {"name": "Unknown Category", "color": "#888888"}


class TransactionNotFound(ValueError):
    pass


class BudgetNotFound(ValueError):
    pass


def cents_to_amount(cents: int) -> float:
    return cents / 100


def month_bounds(year: int, month: int) -> tuple[date, date]:
    start = date(year, month, 1)
    if month == 12:
        return start, date(year + 1, 1, 1) - date.resolution
    return start, date(year, month + 1, 1) - date.resolution


def period_bounds(period: BudgetPeriod, today: date) -> tuple[date, date]:
    """Return the first and last day of the budget period containing ``today``."""
    if period == BudgetPeriod.daily:
        return today, today
    if period == BudgetPeriod.weekly:
        start = today - timedelta(days=today.weekday())
        return start, start + timedelta(days=6)
    if period == BudgetPeriod.monthly:
        return month_bounds(today.year, today.month)
    return date(today.year, 1, 1), date(today.year, 12, 31)


def serialize_transaction(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "user_id": txn.user_id,
        "amount": cents_to_amount(txn.amount_cents),
        "description": txn.description,
        "category_id": txn.category_id,
        "date": txn.date.isoformat(),
        "type": txn.type.value,
        "created_at": txn.created_at.isoformat(),
    }


def serialize_category(category: Category) -> dict[str, object]:
    return {
        "id": category.id,
        "user_id": category.user_id,
        "name": category.name,
        "color": category.color,
        "icon": category.icon,
        "created_at": category.created_at.isoformat(),
    }



def serialize_budget(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "user_id": budget.user_id,
        "category_id": budget.category_id,
        "amount": cents_to_amount(budget.amount_cents),
        "period": budget.period.value,
        "created_at": budget.created_at.isoformat(),
    }

@dataclass
class TransactionFilters:
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    year: Optional[int] = None
    month: Optional[int] = None
    category_id: Optional[str] = None
    type: Optional[TransactionType] = None

    def date_range(self) -> tuple[Optional[date], Optional[date]]:
        if self.year and self.month:
            return month_bounds(self.year, self.month)
        if self.year:
            return date(self.year, 1, 1), date(self.year, 12, 31)
        return self.start_date, self.end_date


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: SignUpIn) -> User:
        if find_user_by_email(self.session, data.email):
            raise ValueError("An account with this email already exists")
        user = User(email=data.email, password_hash=hash_password(data.password))
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValueError("An account with this email already exists") from exc
        CategoryService(self.session, user.id).create_defaults()
        logger.info(f"user_registered: user={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = find_user_by_email(self.session, email)
        if not user or not verify_password(user.password_hash, password):
            raise ValueError("Invalid login credentials")
        return user


class CategoryService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self, txn_type: Optional[TransactionType] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.name)
        )
        categories = list(self.session.scalars(stmt).all())
        if txn_type == TransactionType.income:
            return [c for c in categories if c.name in INCOME_CATEGORY_NAMES]
        if txn_type == TransactionType.expense:
            return [c for c in categories if c.name not in INCOME_CATEGORY_NAMES]
        return categories

    def get(self, category_id: str) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise ValueError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            color=data.color,
            icon=data.icon,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def create_defaults(self) -> int:
        existing = set(
            self.session.scalars(
                select(Category.name).where(Category.user_id == self.user_id)
            ).all()
        )
        created = 0
        for spec in DEFAULT_CATEGORIES:
            if spec["name"] in existing:
                continue
            self.session.add(
                Category(
                    user_id=self.user_id,
                    name=spec["name"],
                    color=spec["color"],
                    icon=spec["icon"],
                )
            )
            created += 1
        self.session.commit()
        logger.info(f"default_categories: user={self.user_id} created={created}")
        return created

    def name_lookup(self) -> dict[str, str]:
        return {c.name: c.id for c in self.list_all()}


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _check_category(self, category_id: str) -> None:
        CategoryService(self.session, self.user_id).get(category_id)

    def create(self, data: TransactionIn) -> Transaction:
        self._check_category(data.category_id)
        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            type=data.type,
            amount_cents=data.amount_cents,
            description=data.description,
            category_id=data.category_id,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: str) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise TransactionNotFound("Transaction not found")
        return txn

    def update(self, transaction_id: str, data: TransactionPatch) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("category_id") is not None:
            self._check_category(changes["category_id"])
        for key, value in changes.items():
            if value is None:
                continue
            if key == "amount":
                txn.amount_cents = to_cents(value)
            else:
                setattr(txn, key, value)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: str) -> None:
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()

    def clear(self) -> int:
        result = self.session.execute(
            delete(Transaction).where(Transaction.user_id == self.user_id)
        )
        self.session.commit()
        count = result.rowcount or 0
        logger.info(f"transactions_cleared: user={self.user_id} count={count}")
        return count

    def list(self, filters: TransactionFilters) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        )
        start, end = filters.date_range()
        if start:
            stmt = stmt.where(Transaction.date >= start)
        if end:
            stmt = stmt.where(Transaction.date <= end)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        return list(self.session.scalars(stmt).all())


class MetricsService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _total(
        self, txn_type: TransactionType, start: Optional[date], end: Optional[date]
    ) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == self.user_id,
            Transaction.type == txn_type,
        )
        if start:
            stmt = stmt.where(Transaction.date >= start)
        if end:
            stmt = stmt.where(Transaction.date <= end)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def summary(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> dict[str, float]:
        income = self._total(TransactionType.income, start, end)
        expenses = self._total(TransactionType.expense, start, end)
        balance = income - expenses
        savings_rate = (balance / income) * 100 if income > 0 else 0.0
        return {
            "totalIncome": cents_to_amount(income),
            "totalExpenses": cents_to_amount(expenses),
            "balance": cents_to_amount(balance),
            "savingsRate": savings_rate,
        }

    def spending_by_category(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[dict[str, object]]:
        stmt = (
            select(
                Transaction.category_id,
                func.sum(Transaction.amount_cents).label("amount_cents"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
            )
            .group_by(Transaction.category_id)
        )
        if start:
            stmt = stmt.where(Transaction.date >= start)
        if end:
            stmt = stmt.where(Transaction.date <= end)
        rows = self.session.execute(stmt).all()
        total = sum(int(row.amount_cents) for row in rows)

        categories = {
            c.id: c
            for c in self.session.scalars(
                select(Category).where(Category.user_id == self.user_id)
            ).all()
        }
        result: list[dict[str, object]] = []
        for row in rows:
            cents = int(row.amount_cents)
            category = categories.get(row.category_id)
            result.append(
                {
                    "category_id": row.category_id,
                    "category_name": category.name
                    if category
                    else UNCATEGORIZED["name"],
                    "category_color": category.color
                    if category
                    else UNCATEGORIZED["color"],
                    "amount": cents_to_amount(cents),
                    "percentage": (cents / total) * 100 if total > 0 else 0.0,
                }
            )
        result.sort(key=lambda item: item["amount"], reverse=True)
        return result


class BudgetService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _check_category(self, category_id: str) -> None:
        CategoryService(self.session, self.user_id).get(category_id)

    def list(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.created_at, Budget.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, budget_id: str) -> Budget:
        budget = self.session.scalar(
            select(Budget).where(Budget.user_id == self.user_id, Budget.id == budget_id)
        )
        if not budget:
            raise BudgetNotFound("Budget not found")
        return budget

    def create(self, data: BudgetIn) -> Budget:
        self._check_category(data.category_id)
        budget = Budget(
            user_id=self.user_id,
            category_id=data.category_id,
            amount_cents=data.amount_cents,
            period=data.period,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(
            f"budget_created: user={self.user_id} budget={budget.id} "
            f"period={budget.period.value}"
        )
        return budget

    def update(self, budget_id: str, data: BudgetPatch) -> Budget:
        budget = self.get(budget_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("category_id") is not None:
            self._check_category(changes["category_id"])
        for key, value in changes.items():
            if value is None:
                continue
            if key == "amount":
                budget.amount_cents = to_cents(value)
            else:
                setattr(budget, key, value)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: str) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def _spent(self, category_id: str, start: date, end: date) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == self.user_id,
            Transaction.type == TransactionType.expense,
            Transaction.category_id == category_id,
            Transaction.date.between(start, end),
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def progress(
        self,
        today: Optional[date] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[dict[str, object]]:
        """Spending against each budget.

        Each budget is measured over its own period containing ``today``
        unless an explicit ``start``/``end`` range is given. ``percentage`` is
        rounded and capped at 100; ``remaining`` goes negative when overspent.
        """
        today = today or date.today()
        result: list[dict[str, object]] = []
        for budget in self.list():
            if start and end:
                window = (start, end)
            else:
                window = period_bounds(budget.period, today)
            spent = self._spent(budget.category_id, *window)
            ratio = Decimal(spent * 100) / Decimal(budget.amount_cents)
            percentage = min(
                100, int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
            )
            category = budget.category
            result.append(
                {
                    "id": budget.id,
                    "category_id": budget.category_id,
                    "category_name": category.name
                    if category
                    else UNKNOWN_CATEGORY["name"],
                    "category_color": category.color
                    if category
                    else UNKNOWN_CATEGORY["color"],
                    "period": budget.period.value,
                    "start": window[0].isoformat(),
                    "end": window[1].isoformat(),
                    "budgeted": cents_to_amount(budget.amount_cents),
                    "spent": cents_to_amount(spent),
                    "remaining": cents_to_amount(budget.amount_cents - spent),
                    "percentage": percentage,
                }
            )
        return result
