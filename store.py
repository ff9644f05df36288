from datetime import date
from typing import Optional, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from errors import (
    CategoryProvisionError,
    CategoryReferenceError,
    RowExistenceCheckError,
    RowWriteError,
)
from models import Category, Transaction, TransactionType
from schemas import TransactionCandidate


class TransactionStore(Protocol):
    """Owner-scoped persistence used by the import workflow.

    Every method raises a subclass of ``errors.StoreError`` on failure and
    never leaves a half-written row behind.
    """

    def find_matching(
        self, owner_id: str, txn_date: date, description: str, amount_cents: int
    ) -> Sequence[Transaction]:
        ...

    def insert_transaction(
        self, owner_id: str, candidate: TransactionCandidate, category_id: str
    ) -> Transaction:
        ...

    def update_transaction(
        self,
        transaction_id: str,
        owner_id: str,
        category_id: str,
        txn_type: TransactionType,
    ) -> Transaction:
        ...

    def list_categories(self, owner_id: str) -> Sequence[Category]:
        ...

    def insert_category(
        self, owner_id: str, name: str, color: str, icon: Optional[str] = None
    ) -> Category:
        ...


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    return "foreign key" in str(exc.orig).lower()


class SQLAlchemyStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _owned_category_id(self, owner_id: str, category_id: str) -> Optional[str]:
        return self.session.scalar(
            select(Category.id).where(
                Category.id == category_id, Category.user_id == owner_id
            )
        )

    def find_matching(
        self, owner_id: str, txn_date: date, description: str, amount_cents: int
    ) -> list[Transaction]:
        # Oldest first: callers take the first row when several match.
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == owner_id,
                Transaction.date == txn_date,
                Transaction.description == description,
                Transaction.amount_cents == amount_cents,
            )
            .order_by(Transaction.created_at, Transaction.id)
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise RowExistenceCheckError(str(exc)) from exc

    def insert_transaction(
        self, owner_id: str, candidate: TransactionCandidate, category_id: str
    ) -> Transaction:
        try:
            if self._owned_category_id(owner_id, category_id) is None:
                raise CategoryReferenceError(
                    f"insert violates foreign key constraint on category_id={category_id}"
                )
            txn = Transaction(
                user_id=owner_id,
                date=candidate.date,
                type=candidate.type,
                amount_cents=candidate.amount_cents,
                description=candidate.description,
                category_id=category_id,
            )
            self.session.add(txn)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if _is_foreign_key_violation(exc):
                raise CategoryReferenceError(str(exc.orig)) from exc
            raise RowWriteError(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise RowWriteError(str(exc)) from exc
        return txn

    def update_transaction(
        self,
        transaction_id: str,
        owner_id: str,
        category_id: str,
        txn_type: TransactionType,
    ) -> Transaction:
        try:
            txn = self.session.scalar(
                select(Transaction).where(
                    Transaction.id == transaction_id, Transaction.user_id == owner_id
                )
            )
            if txn is None:
                raise RowWriteError(f"Transaction {transaction_id} not found")
            if self._owned_category_id(owner_id, category_id) is None:
                raise RowWriteError(f"Category {category_id} not found")
            txn.category_id = category_id
            txn.type = txn_type
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise RowWriteError(str(exc)) from exc
        return txn

    def list_categories(self, owner_id: str) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == owner_id)
            .order_by(Category.created_at, Category.id)
        )
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise CategoryProvisionError(str(exc)) from exc

    def insert_category(
        self, owner_id: str, name: str, color: str, icon: Optional[str] = None
    ) -> Category:
        category = Category(user_id=owner_id, name=name, color=color, icon=icon)
        try:
            self.session.add(category)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise CategoryProvisionError(str(exc)) from exc
        return category
