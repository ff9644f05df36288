import itertools
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from types import SimpleNamespace
from typing import Optional

import pytest

import importer
from errors import (
    CategoryProvisionError,
    CategoryReferenceError,
    ImportValidationError,
    RowExistenceCheckError,
    RowWriteError,
)
from importer import (
    DropReason,
    Dropped,
    Inserted,
    Updated,
    import_transactions,
    validate_batch,
)
from models import TransactionType

OWNER = "user-1"


@dataclass
class FakeCategory:
    id: str
    user_id: str
    name: str
    color: str
    icon: Optional[str] = None


@dataclass
class FakeTransaction:
    id: str
    user_id: str
    date: date
    description: str
    amount_cents: int
    category_id: str
    type: TransactionType


class FakeStore:
    def __init__(self, category_ids=("catA", "catB")) -> None:
        self._ids = itertools.count(1)
        self.transactions: list[FakeTransaction] = []
        self.categories = [
            FakeCategory(cid, OWNER, cid, "#000000") for cid in category_ids
        ]
        self.fail_find_descriptions: set[str] = set()
        self.fail_insert: Optional[Exception] = None
        self.fail_update = False
        self.fail_provision = False
        self.insert_calls = 0

    def find_matching(self, owner_id, txn_date, description, amount_cents):
        if description in self.fail_find_descriptions:
            raise RowExistenceCheckError("connection reset")
        return [
            t
            for t in self.transactions
            if t.user_id == owner_id
            and t.date == txn_date
            and t.description == description
            and t.amount_cents == amount_cents
        ]

    def insert_transaction(self, owner_id, candidate, category_id):
        self.insert_calls += 1
        if self.fail_insert is not None:
            raise self.fail_insert
        if not any(
            c.id == category_id and c.user_id == owner_id for c in self.categories
        ):
            raise CategoryReferenceError(f"unknown category {category_id}")
        txn = FakeTransaction(
            id=f"t{next(self._ids)}",
            user_id=owner_id,
            date=candidate.date,
            description=candidate.description,
            amount_cents=candidate.amount_cents,
            category_id=category_id,
            type=candidate.type,
        )
        self.transactions.append(txn)
        return txn

    def update_transaction(self, transaction_id, owner_id, category_id, txn_type):
        if self.fail_update:
            raise RowWriteError("update rejected")
        txn = next(t for t in self.transactions if t.id == transaction_id)
        txn.category_id = category_id
        txn.type = txn_type
        return txn

    def list_categories(self, owner_id):
        return [c for c in self.categories if c.user_id == owner_id]

    def insert_category(self, owner_id, name, color, icon=None):
        if self.fail_provision:
            raise CategoryProvisionError("permission denied")
        category = FakeCategory(f"c{next(self._ids)}", owner_id, name, color, icon)
        self.categories.append(category)
        return category

    def category_named(self, name):
        return next((c for c in self.categories if c.name == name), None)


def _row(**overrides):
    row = {
        "date": "2024-01-01",
        "description": "Coffee",
        "amount": 4.50,
        "type": "expense",
        "category_id": "catA",
    }
    row.update(overrides)
    return row


def test_reimport_recategorizes_existing_transaction() -> None:
    store = FakeStore()

    first = import_transactions(store, OWNER, [_row()])
    assert (first.inserted, first.updated, first.total) == (1, 0, 1)

    second = import_transactions(store, OWNER, [_row(category_id="catB")])
    assert (second.inserted, second.updated, second.total) == (0, 1, 1)

    assert len(store.transactions) == 1
    assert store.transactions[0].category_id == "catB"
    assert store.transactions[0].amount_cents == 450


def test_importing_same_batch_twice_is_idempotent() -> None:
    store = FakeStore()
    batch = [
        _row(description="Coffee"),
        _row(description="Rent", amount="1200.00", category_id="catB"),
        _row(description="Salary", amount=3000, type="income"),
    ]

    first = import_transactions(store, OWNER, batch)
    second = import_transactions(store, OWNER, batch)

    assert (first.inserted, first.updated) == (3, 0)
    assert (second.inserted, second.updated) == (0, 3)
    assert len(store.transactions) == 3


def test_duplicates_within_one_batch_update_the_first_row() -> None:
    store = FakeStore()
    summary = import_transactions(
        store,
        OWNER,
        [_row(category_id="catA"), _row(category_id="catB", type="income")],
    )

    assert [type(o) for o in summary.outcomes] == [Inserted, Updated]
    assert len(store.transactions) == 1
    assert store.transactions[0].category_id == "catB"
    assert store.transactions[0].type == TransactionType.income


def test_update_keeps_description_amount_and_date() -> None:
    store = FakeStore()
    import_transactions(store, OWNER, [_row()])
    original = store.transactions[0]

    import_transactions(store, OWNER, [_row(category_id="catB")])

    assert original.description == "Coffee"
    assert original.amount_cents == 450
    assert original.date == date(2024, 1, 1)


def test_first_match_wins_when_identity_is_ambiguous() -> None:
    store = FakeStore()
    for txn_id in ("older", "newer"):
        store.transactions.append(
            FakeTransaction(
                txn_id,
                OWNER,
                date(2024, 1, 1),
                "Coffee",
                450,
                "catA",
                TransactionType.expense,
            )
        )

    summary = import_transactions(store, OWNER, [_row(category_id="catB")])

    assert summary.outcomes == [Updated(0, "older")]
    assert store.transactions[1].category_id == "catA"


def test_missing_category_provisions_fallback_for_expense() -> None:
    store = FakeStore()
    summary = import_transactions(store, OWNER, [_row(category_id="nope")])

    fallback = store.category_named("Other Expenses")
    assert fallback is not None
    assert fallback.color == "#F44336"
    assert fallback.icon == "circle"
    assert store.category_named("Other Income") is not None
    assert summary.inserted == 1
    assert summary.outcomes[0].used_fallback is True
    assert store.transactions[0].category_id == fallback.id


def test_missing_category_uses_income_fallback_for_income() -> None:
    store = FakeStore()
    import_transactions(store, OWNER, [_row(category_id="nope", type="income")])

    assert store.transactions[0].category_id == store.category_named("Other Income").id


def test_existing_fallback_categories_are_not_duplicated() -> None:
    store = FakeStore()
    import_transactions(store, OWNER, [_row(category_id="nope")])
    import_transactions(
        store, OWNER, [_row(description="Tea", category_id="also-missing")]
    )

    names = [c.name for c in store.categories]
    assert names.count("Other Expenses") == 1
    assert names.count("Other Income") == 1


def test_provisioning_failure_with_existing_fallback_still_inserts() -> None:
    store = FakeStore()
    store.categories.append(FakeCategory("oe", OWNER, "Other Expenses", "#F44336"))
    store.fail_provision = True

    summary = import_transactions(store, OWNER, [_row(category_id="nope")])

    assert summary.inserted == 1
    assert store.transactions[0].category_id == "oe"


def test_provisioning_failure_without_fallback_drops_row() -> None:
    store = FakeStore()
    store.fail_provision = True

    summary = import_transactions(store, OWNER, [_row(category_id="nope")])

    assert summary.as_response()["success"] is True
    assert summary.inserted == 0
    assert summary.outcomes == [Dropped(0, DropReason.fallback_unavailable)]


def test_fallback_insert_is_retried_only_once() -> None:
    store = FakeStore()
    store.fail_insert = CategoryReferenceError("still broken")

    summary = import_transactions(store, OWNER, [_row()])

    assert store.insert_calls == 2
    assert summary.inserted == 0
    assert summary.dropped[0].reason == DropReason.fallback_insert_failed


def test_other_insert_failure_drops_row_without_fallback() -> None:
    store = FakeStore()
    store.fail_insert = RowWriteError("check constraint failed")

    summary = import_transactions(store, OWNER, [_row()])

    assert store.insert_calls == 1
    assert store.category_named("Other Expenses") is None
    assert summary.dropped[0].reason == DropReason.insert_failed


def test_update_failure_drops_row() -> None:
    store = FakeStore()
    import_transactions(store, OWNER, [_row()])
    store.fail_update = True

    summary = import_transactions(store, OWNER, [_row(category_id="catB")])

    assert (summary.inserted, summary.updated, summary.total) == (0, 0, 1)
    assert summary.dropped[0].reason == DropReason.update_failed
    assert store.transactions[0].category_id == "catA"


def test_existence_check_failure_skips_only_that_row() -> None:
    store = FakeStore()
    batch = [_row(description=f"Purchase {i}") for i in range(10)]
    store.fail_find_descriptions.add("Purchase 4")

    summary = import_transactions(store, OWNER, batch)

    assert summary.total == 10
    assert summary.inserted + summary.updated <= 9
    assert summary.inserted == 9
    assert summary.dropped == [
        Dropped(4, DropReason.existence_check_failed, "connection reset")
    ]


def test_negative_amount_rejects_whole_batch() -> None:
    store = FakeStore()
    batch = [_row(description="Fine"), _row(amount=-5)]

    with pytest.raises(ImportValidationError) as excinfo:
        import_transactions(store, OWNER, batch)

    assert store.transactions == []
    assert store.insert_calls == 0
    assert [err["path"] for err in excinfo.value.errors] == [[1, "amount"]]


@pytest.mark.parametrize(
    "bad",
    [
        {"description": ""},
        {"description": "x" * 501},
        {"category_id": ""},
        {"date": "01/02/2024"},
        {"type": "transfer"},
        {"amount": 0},
        {"amount": "0.004"},
        {"amount": "100000000000000000"},
    ],
)
def test_validator_rejects_malformed_fields(bad) -> None:
    with pytest.raises(ImportValidationError) as excinfo:
        validate_batch([_row(**bad)])
    field = next(iter(bad))
    assert excinfo.value.errors[0]["path"] == [0, field]


def test_validator_rejects_missing_transactions_list() -> None:
    with pytest.raises(ImportValidationError):
        validate_batch(None)


def test_validator_accepts_timestamps_and_string_amounts() -> None:
    candidates = validate_batch(
        [_row(date="2024-03-05T10:30:00Z", amount="12.30")]
    )

    assert candidates[0].date == date(2024, 3, 5)
    assert candidates[0].amount_cents == 1230


def test_summary_message() -> None:
    store = FakeStore()
    summary = import_transactions(
        store, OWNER, [_row(), _row(description="Bagel"), _row()]
    )

    assert summary.as_response() == {
        "success": True,
        "inserted": 2,
        "updated": 1,
        "total": 3,
        "message": "Successfully processed 3 transactions (2 inserted, 1 updated)",
    }


@pytest.mark.parametrize(
    "raw,cents",
    [
        ("1.234", 123),
        (4.505, 451),
        (0.1 + 0.2, 30),
        ("9999999999.99", 999999999999),
    ],
)
def test_validator_rounds_amounts_to_cents(raw, cents) -> None:
    candidate = validate_batch([_row(amount=raw)])[0]

    assert candidate.amount_cents == cents
    assert candidate.amount == Decimal(cents) / 100


def test_zero_batch_size_still_imports(monkeypatch) -> None:
    monkeypatch.setattr(
        importer, "get_settings", lambda: SimpleNamespace(import_batch_size=0)
    )
    store = FakeStore()

    summary = import_transactions(
        store, OWNER, [_row(), _row(description="Bagel")], batch_size=0
    )

    assert summary.inserted == 2
