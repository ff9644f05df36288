import csv
import re
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Optional

from models import TransactionType


@dataclass(frozen=True)
class ImportFormat:
    date_column: str
    description_column: str
    amount_column: str
    date_format: str = "DD/MM/YYYY"
    type_column: Optional[str] = None
    category_column: Optional[str] = None
    negative_is_expense: bool = True
    has_header: bool = True


@dataclass(frozen=True)
class BankTemplate:
    id: str
    name: str
    format: ImportFormat


@dataclass
class BankRow:
    date: str
    description: str
    amount: str
    type: Optional[TransactionType] = None
    category: Optional[str] = None


BANK_TEMPLATES: dict[str, BankTemplate] = {
    t.id: t
    for t in [
        BankTemplate("nubank", "Nubank", ImportFormat("Data", "Descrição", "Valor")),
        BankTemplate("itau", "Itaú", ImportFormat("Data", "Histórico", "Valor")),
        BankTemplate("bradesco", "Bradesco", ImportFormat("Data", "Histórico", "Valor")),
        BankTemplate("santander", "Santander", ImportFormat("Data", "Descrição", "Valor")),
        BankTemplate("bb", "Banco do Brasil", ImportFormat("Data", "Histórico", "Valor")),
        BankTemplate("custom", "Personalizado", ImportFormat("", "", "")),
    ]
}


def get_template(template_id: str, **overrides: object) -> ImportFormat:
    """Return the template's format with column overrides applied."""
    template = BANK_TEMPLATES.get(template_id)
    if template is None:
        raise ValueError(f"Unknown bank template '{template_id}'")
    fmt = replace(template.format, **{k: v for k, v in overrides.items() if v is not None})
    if not (fmt.date_column and fmt.description_column and fmt.amount_column):
        raise ValueError("Date, description and amount columns are required")
    return fmt


def _rows(content: str, fmt: ImportFormat) -> list[dict[str, str]]:
    if fmt.has_header:
        return list(csv.DictReader(StringIO(content)))
    # Headerless files address columns by zero-based position.
    return [
        {str(i): value for i, value in enumerate(raw)}
        for raw in csv.reader(StringIO(content))
    ]


def _type_from_amount(amount: str) -> TransactionType:
    amount = amount.strip()
    if amount.startswith("-") or amount.startswith("("):
        return TransactionType.expense
    return TransactionType.income


def parse_bank_csv(content: str, fmt: ImportFormat) -> list[BankRow]:
    rows: list[BankRow] = []
    for raw in _rows(content, fmt):
        if not any((value or "").strip() for value in raw.values()):
            continue
        date_value = (raw.get(fmt.date_column) or "").strip()
        description = (raw.get(fmt.description_column) or "").strip()
        amount = (raw.get(fmt.amount_column) or "").strip()
        if not date_value or not description or not amount:
            continue

        txn_type: Optional[TransactionType] = None
        type_raw = (raw.get(fmt.type_column) or "").strip() if fmt.type_column else ""
        if type_raw:
            txn_type = (
                TransactionType.income
                if "income" in type_raw.lower()
                else TransactionType.expense
            )
        elif fmt.negative_is_expense:
            txn_type = _type_from_amount(amount)

        category = None
        if fmt.category_column:
            category = (raw.get(fmt.category_column) or "").strip() or None

        rows.append(BankRow(date_value, description, amount, txn_type, category))
    return rows


def normalize_amount(value: str) -> Decimal:
    negative = "(" in value and ")" in value
    clean = re.sub(r"[^\d.,\-]", "", value)
    if "," in clean and "." in clean:
        # 1.234,56 or 1,234.56: the last separator is the decimal point.
        if clean.rfind(",") > clean.rfind("."):
            clean = clean.replace(".", "").replace(",", ".")
        else:
            clean = clean.replace(",", "")
    else:
        clean = clean.replace(",", ".")
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount '{value}'") from exc
    if negative:
        amount = -abs(amount)
    return amount


def normalize_date(value: str, date_format: str = "DD/MM/YYYY") -> date:
    value = value.strip()
    if re.match(r"^\d{4}-\d{2}-\d{2}", value):
        return date.fromisoformat(value[:10])
    parts = re.split(r"[/.\-]", value)
    if len(parts) != 3:
        raise ValueError(f"Invalid date '{value}'")
    if len(parts[2]) == 2:
        parts[2] = ("19" if int(parts[2]) > 50 else "20") + parts[2]
    if date_format.upper().startswith("MM"):
        month, day, year = parts
    else:
        day, month, year = parts
    return date(int(year), int(month), int(day))


def to_candidates(
    rows: list[BankRow],
    category_map: dict[str, str],
    date_format: str = "DD/MM/YYYY",
    fallback_ids: Optional[dict[TransactionType, str]] = None,
) -> list[dict[str, object]]:
    """Turn parsed rows into import candidates.

    ``category_map`` maps category names (or keywords) to category ids. An
    explicit category column wins, otherwise the first keyword found in the
    description is used, then the fallback category for the row type.
    """
    candidates: list[dict[str, object]] = []
    for row in rows:
        amount = normalize_amount(row.amount)
        txn_type = row.type or TransactionType.expense

        category_id = ""
        if row.category and row.category in category_map:
            category_id = category_map[row.category]
        else:
            description = row.description.lower()
            for keyword, mapped_id in category_map.items():
                if keyword.lower() in description:
                    category_id = mapped_id
                    break
        if not category_id and fallback_ids:
            category_id = fallback_ids.get(txn_type, "")

        candidates.append(
            {
                "amount": abs(amount),
                "description": row.description,
                "category_id": category_id,
                "date": normalize_date(row.date, date_format),
                "type": txn_type.value,
            }
        )
    return candidates
