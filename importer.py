"""Transaction import and reconciliation.

A validated batch is processed row by row. Each row is either inserted,
used to recategorize an existing duplicate, or dropped; one bad row never
fails the batch. Duplicates are identified by the exact tuple
(owner, date, description, amount).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import TypeAdapter, ValidationError

from config import get_settings
from errors import (
    CategoryProvisionError,
    CategoryReferenceError,
    ImportValidationError,
    RowExistenceCheckError,
    RowWriteError,
)
from models import Transaction, TransactionType
from schemas import TransactionCandidate
from store import TransactionStore

logger = logging.getLogger(__name__)

FALLBACK_CATEGORIES: dict[TransactionType, tuple[str, str]] = {
    TransactionType.income: ("Other Income", "#4CAF50"),
    TransactionType.expense: ("Other Expenses", "#F44336"),
}
FALLBACK_ICON = "circle"

_candidates_adapter = TypeAdapter(list[TransactionCandidate])


class DropReason(str, Enum):
    existence_check_failed = "existence_check_failed"
    insert_failed = "insert_failed"
    fallback_unavailable = "fallback_unavailable"
    fallback_insert_failed = "fallback_insert_failed"
    update_failed = "update_failed"


@dataclass(frozen=True)
class Inserted:
    index: int
    transaction_id: str
    used_fallback: bool = False


@dataclass(frozen=True)
class Updated:
    index: int
    transaction_id: str


@dataclass(frozen=True)
class Dropped:
    index: int
    reason: DropReason
    detail: str = ""


RowOutcome = Union[Inserted, Updated, Dropped]


@dataclass
class ImportSummary:
    total: int
    outcomes: list[RowOutcome] = field(default_factory=list)

    @property
    def inserted(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, Inserted))

    @property
    def updated(self) -> int:
        return sum(1 for o in self.outcomes if isinstance(o, Updated))

    @property
    def dropped(self) -> list[Dropped]:
        return [o for o in self.outcomes if isinstance(o, Dropped)]

    @property
    def message(self) -> str:
        return (
            f"Successfully processed {self.total} transactions "
            f"({self.inserted} inserted, {self.updated} updated)"
        )

    def as_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "inserted": self.inserted,
            "updated": self.updated,
            "total": self.total,
            "message": self.message,
        }


def validate_batch(raw: Any) -> list[TransactionCandidate]:
    """Validate every record or reject the whole batch."""
    try:
        return _candidates_adapter.validate_python(raw)
    except ValidationError as exc:
        errors = [
            {"path": list(err["loc"]), "message": err["msg"]}
            for err in exc.errors(include_url=False)
        ]
        raise ImportValidationError(errors) from exc


def find_duplicate(
    store: TransactionStore, owner_id: str, candidate: TransactionCandidate
) -> Optional[Transaction]:
    """Return the existing record sharing the candidate's identity tuple.

    When several records match, the store's ordering decides: the oldest
    record (by created_at, then id) wins.
    """
    matches = store.find_matching(
        owner_id, candidate.date, candidate.description, candidate.amount_cents
    )
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning(
            f"import_duplicate_ambiguous: owner={owner_id} matches={len(matches)} "
            f"chosen={matches[0].id}"
        )
    return matches[0]


def ensure_fallback_categories(
    store: TransactionStore, owner_id: str
) -> dict[TransactionType, str]:
    """Provision the fallback categories when missing and return their ids."""
    existing = {c.name: c.id for c in store.list_categories(owner_id)}
    for name, color in FALLBACK_CATEGORIES.values():
        if name in existing:
            continue
        try:
            store.insert_category(owner_id, name, color, FALLBACK_ICON)
        except CategoryProvisionError as exc:
            logger.warning(
                f"import_fallback_provision_failed: owner={owner_id} name={name} error={exc}"
            )

    by_name: dict[str, str] = {}
    for category in store.list_categories(owner_id):
        by_name.setdefault(category.name, category.id)
    return {
        txn_type: by_name[name]
        for txn_type, (name, _color) in FALLBACK_CATEGORIES.items()
        if name in by_name
    }


def _insert(
    store: TransactionStore,
    owner_id: str,
    candidate: TransactionCandidate,
    index: int,
) -> RowOutcome:
    try:
        txn = store.insert_transaction(owner_id, candidate, candidate.category_id)
        return Inserted(index, txn.id)
    except CategoryReferenceError as exc:
        logger.info(
            f"import_category_missing: owner={owner_id} row={index} "
            f"category_id={candidate.category_id} error={exc}"
        )
    except RowWriteError as exc:
        logger.error(f"import_insert_failed: owner={owner_id} row={index} error={exc}")
        return Dropped(index, DropReason.insert_failed, str(exc))

    try:
        fallback_ids = ensure_fallback_categories(store, owner_id)
    except CategoryProvisionError as exc:
        fallback_ids = {}
        logger.error(
            f"import_fallback_lookup_failed: owner={owner_id} row={index} error={exc}"
        )
    fallback_id = fallback_ids.get(candidate.type)
    if fallback_id is None:
        logger.error(
            f"import_fallback_unavailable: owner={owner_id} row={index} "
            f"type={candidate.type.value}"
        )
        return Dropped(index, DropReason.fallback_unavailable)

    try:
        txn = store.insert_transaction(owner_id, candidate, fallback_id)
    except RowWriteError as exc:
        logger.error(
            f"import_fallback_insert_failed: owner={owner_id} row={index} error={exc}"
        )
        return Dropped(index, DropReason.fallback_insert_failed, str(exc))
    return Inserted(index, txn.id, used_fallback=True)


def _update(
    store: TransactionStore,
    owner_id: str,
    candidate: TransactionCandidate,
    existing: Transaction,
    index: int,
) -> RowOutcome:
    # Only category and type follow the import; edited fields are kept.
    try:
        txn = store.update_transaction(
            existing.id, owner_id, candidate.category_id, candidate.type
        )
    except RowWriteError as exc:
        logger.error(
            f"import_update_failed: owner={owner_id} row={index} "
            f"transaction={existing.id} error={exc}"
        )
        return Dropped(index, DropReason.update_failed, str(exc))
    return Updated(index, txn.id)


def process_row(
    store: TransactionStore,
    owner_id: str,
    candidate: TransactionCandidate,
    index: int,
) -> RowOutcome:
    try:
        existing = find_duplicate(store, owner_id, candidate)
    except RowExistenceCheckError as exc:
        logger.error(
            f"import_existence_check_failed: owner={owner_id} row={index} error={exc}"
        )
        return Dropped(index, DropReason.existence_check_failed, str(exc))

    if existing is None:
        return _insert(store, owner_id, candidate, index)
    return _update(store, owner_id, candidate, existing, index)


def import_transactions(
    store: TransactionStore,
    owner_id: str,
    raw: Any,
    *,
    batch_size: Optional[int] = None,
) -> ImportSummary:
    """Validate ``raw`` and reconcile each row against ``store``.

    Raises ImportValidationError before anything is written when any record
    is malformed. Row-level failures are recorded as Dropped outcomes.
    """
    candidates = validate_batch(raw)
    batch_size = max(1, batch_size or get_settings().import_batch_size)
    summary = ImportSummary(total=len(candidates))

    for index, candidate in enumerate(candidates):
        summary.outcomes.append(process_row(store, owner_id, candidate, index))
        processed = index + 1
        if processed % batch_size == 0 and processed < summary.total:
            logger.info(
                f"import_progress: owner={owner_id} processed={processed}/{summary.total}"
            )

    logger.info(
        f"import_done: owner={owner_id} total={summary.total} "
        f"inserted={summary.inserted} updated={summary.updated} "
        f"dropped={len(summary.dropped)}"
    )
    return summary
