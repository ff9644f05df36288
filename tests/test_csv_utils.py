from datetime import date
from decimal import Decimal

import pytest

from csv_utils import (
    BankRow,
    get_template,
    normalize_amount,
    normalize_date,
    parse_bank_csv,
    to_candidates,
)
from models import TransactionType


def test_parse_bank_csv_with_template_skips_blank_rows() -> None:
    content = (
        "Data,Descrição,Valor\n"
        "05/01/2024,Mercado,-25.90\n"
        ",,\n"
        "06/01/2024,,10.00\n"
        "07/01/2024,Salário,3000.00\n"
    )

    rows = parse_bank_csv(content, get_template("nubank"))

    assert [r.description for r in rows] == ["Mercado", "Salário"]
    assert rows[0].type == TransactionType.expense
    assert rows[1].type == TransactionType.income


def test_parse_bank_csv_with_type_and_category_columns() -> None:
    fmt = get_template(
        "custom",
        date_column="when",
        description_column="what",
        amount_column="value",
        type_column="kind",
        category_column="cat",
    )
    content = "when,what,value,kind,cat\n2024-02-01,Bonus,500,Income,Salary\n"

    rows = parse_bank_csv(content, fmt)

    assert rows == [
        BankRow("2024-02-01", "Bonus", "500", TransactionType.income, "Salary")
    ]


def test_headerless_file_uses_column_positions() -> None:
    fmt = get_template(
        "custom",
        date_column="0",
        description_column="1",
        amount_column="2",
        has_header=False,
    )

    rows = parse_bank_csv("01/03/2024,Bus,-4.40\n", fmt)

    assert rows[0].description == "Bus"
    assert rows[0].type == TransactionType.expense


def test_get_template_errors() -> None:
    with pytest.raises(ValueError, match="Unknown bank template"):
        get_template("mystery")
    with pytest.raises(ValueError, match="columns are required"):
        get_template("custom")


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("1.234,56", Decimal("1234.56")),
        ("1,234.56", Decimal("1234.56")),
        ("R$ 25,90", Decimal("25.90")),
        ("-10.00", Decimal("-10.00")),
        ("(42.00)", Decimal("-42.00")),
    ],
)
def test_normalize_amount(raw, expected) -> None:
    assert normalize_amount(raw) == expected


def test_normalize_amount_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        normalize_amount("n/a")


def test_normalize_date_formats() -> None:
    assert normalize_date("05/01/2024") == date(2024, 1, 5)
    assert normalize_date("01/05/2024", "MM/DD/YYYY") == date(2024, 1, 5)
    assert normalize_date("05.01.99") == date(1999, 1, 5)
    assert normalize_date("05-01-24") == date(2024, 1, 5)
    assert normalize_date("2024-01-05T08:00:00") == date(2024, 1, 5)
    with pytest.raises(ValueError):
        normalize_date("January 5th")


def test_to_candidates_maps_categories() -> None:
    rows = [
        BankRow("05/01/2024", "Uber trip", "-18.00", TransactionType.expense),
        BankRow("06/01/2024", "Gift card", "50.00", TransactionType.income, "Gifts"),
        BankRow("07/01/2024", "Unknown shop", "-9.99", TransactionType.expense),
        BankRow("08/01/2024", "Mystery credit", "12.00", None),
    ]
    category_map = {"Uber": "transport", "Gifts": "gifts"}
    fallback_ids = {
        TransactionType.expense: "other-expenses",
        TransactionType.income: "other-income",
    }

    candidates = to_candidates(rows, category_map, fallback_ids=fallback_ids)

    assert [c["category_id"] for c in candidates] == [
        "transport",
        "gifts",
        "other-expenses",
        "other-expenses",
    ]
    assert candidates[0]["amount"] == Decimal("18.00")
    assert candidates[0]["date"] == date(2024, 1, 5)
    assert candidates[3]["type"] == "expense"


def test_to_candidates_without_fallback_leaves_category_empty() -> None:
    rows = [BankRow("05/01/2024", "Unknown", "-1.00", TransactionType.expense)]

    assert to_candidates(rows, {})[0]["category_id"] == ""
