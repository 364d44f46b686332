import csv
import re
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from ledgers import SpendingRecord
from periods import parse_month_key
from schemas import EntryCSVRow


def sanitize_csv_value(value: str) -> str:
    """
    Prefix values that a spreadsheet would treat as formulas with a tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    cents = int((amount * 100).quantize(Decimal("1")))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def format_cents(cents: int) -> str:
    return f"{cents / 100:.2f}"


def parse_entries_csv(content: str) -> tuple[list[EntryCSVRow], list[str]]:
    """Parse monthly snapshot rows with Month, Category, Subcategory, Amount columns."""
    reader = csv.DictReader(StringIO(content))
    rows: list[EntryCSVRow] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        try:
            key = parse_month_key(raw.get("Month") or "")
            category = (raw.get("Category") or "").strip()
            subcategory = (raw.get("Subcategory") or "").strip()
            if not category or not subcategory:
                raise ValueError("Category and Subcategory are required")
            rows.append(
                EntryCSVRow(
                    year=key.year,
                    month=key.month,
                    category=category,
                    subcategory=subcategory,
                    amount_cents=parse_amount(
                        raw.get("Amount") or "0", allow_negative=True
                    ),
                )
            )
        except ValueError as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors


def export_month_records(
    records: Sequence[SpendingRecord], labels: dict[int, tuple[str, str]]
) -> str:
    """``labels`` maps subcategory id to ``(category name, subcategory name)``."""
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["Source", "Date", "Category", "Subcategory", "Amount", "Notes"])
    for record in records:
        category, subcategory = labels.get(record.subcategory_id, ("", ""))
        writer.writerow(
            [
                record.source,
                record.occurred_at.isoformat() if record.occurred_at else "",
                sanitize_csv_value(category),
                sanitize_csv_value(subcategory),
                format_cents(record.amount_cents),
                sanitize_csv_value(record.notes or ""),
            ]
        )
    return output.getvalue()
