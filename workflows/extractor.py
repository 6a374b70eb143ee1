"""Field extraction from payment guide text.

Every rule is a small pure function over the normalized line list, so each
one can be tested on its own. Extraction is best-effort: a rule that finds
nothing returns None and never raises.
"""

import math
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple, Union

# CNPJ: 14 digits, optionally punctuated as 00.000.000/0000-00
RX_TAX_ID = re.compile(r"(\d{2}\.?\d{3}\.?\d{3}/?\d{4}-?\d{2})")

RX_PERIOD = re.compile(
    r"(?:per[ií]odo(?:\s+de\s+apura[çc][ãa]o)?|comp(?:et[êe]ncia)?)"
    r"[:\s-]*([01]?\d)[/\-]([12]\d{3})",
    re.IGNORECASE,
)

RX_AMOUNT = re.compile(
    r"(?:valor(?:\s+total)?(?:\s+da\s+guia)?|total|valor\s+a\s+pagar)"
    r"[:\s]*R?\$?\s*([\d.,]+)",
    re.IGNORECASE,
)

RX_DUE_DATE = re.compile(
    r"venc(?:imento)?[:\s-]*([0-3]?\d)/([01]?\d)/(\d{4}|\d{2})\b",
    re.IGNORECASE,
)

TAX_ID_LENGTH = 14
MIN_ENTITY_LENGTH = 3


@dataclass
class ExtractedFields:
    """Fields read from one document. Any of them may be missing."""

    entity: Optional[str] = None
    tax_id: Optional[str] = None
    period: Optional[str] = None        # "MM-YYYY"
    amount: Optional[Decimal] = None
    due_date: Optional[str] = None      # "DD/MM/YYYY"

    @property
    def is_routable(self) -> bool:
        """Intake needs both the client name and the period."""
        return bool(self.entity) and bool(self.period)

    def to_dict(self) -> dict:
        return {
            "entity": self.entity,
            "tax_id": self.tax_id,
            "period": self.period,
            "amount": str(self.amount) if self.amount is not None else None,
            "due_date": self.due_date,
        }


def normalize_lines(text: Optional[str]) -> List[str]:
    """Split text into trimmed, non-empty lines."""
    if not text:
        return []
    lines = [line.strip() for line in text.replace("\r", "\n").split("\n")]
    return [line for line in lines if line]


def sanitize_tax_id(raw: Optional[str]) -> str:
    """Keep digits only and left-pad with zeros to 14 characters."""
    digits = re.sub(r"\D", "", raw or "")
    return digits.rjust(TAX_ID_LENGTH, "0")


def to_period_folder_name(month: Union[int, str, float, None],
                          year: Union[int, str, float, None]) -> Optional[str]:
    """Format a month and year as a "MM-YYYY" folder name.

    Returns None for non-numeric values, NaN/infinity, or a month outside
    1..12.
    """
    try:
        month_num = float(str(month).strip())
        year_num = float(str(year).strip())
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(month_num) and math.isfinite(year_num)):
        return None
    if month_num != int(month_num) or year_num != int(year_num):
        return None
    if not 1 <= int(month_num) <= 12 or int(year_num) < 0:
        return None
    return f"{int(month_num):02d}-{int(year_num)}"


def normalize_amount(raw: Optional[str]) -> Optional[Decimal]:
    """Parse a Brazilian-formatted amount ("1.234,56") into a Decimal.

    ``.`` is the thousands separator and ``,`` the decimal separator.
    Anything unparseable yields None.
    """
    if raw is None:
        return None
    compact = re.sub(r"\s", "", str(raw))
    only = re.sub(r"[^0-9,.\-]", "", compact)
    normalized = only.replace(".", "").replace(",", ".", 1)
    if not normalized:
        return None
    try:
        value = Decimal(normalized)
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def find_tax_id(lines: List[str]) -> Tuple[Optional[str], Optional[int]]:
    """Return the sanitized tax id and the index of the line holding it."""
    for index, line in enumerate(lines):
        match = RX_TAX_ID.search(line)
        if match:
            return sanitize_tax_id(match.group(1)), index
    return None, None


def find_entity(lines: List[str], tax_id_line: Optional[int] = None) -> Optional[str]:
    """Guess the company name.

    The line right above the tax id wins; otherwise the first line longer
    than three characters.
    """
    if tax_id_line is not None and tax_id_line > 0:
        candidate = lines[tax_id_line - 1].strip()
        if len(candidate) >= MIN_ENTITY_LENGTH:
            return candidate
    for line in lines:
        if len(line) > MIN_ENTITY_LENGTH:
            return line
    return None


def find_period(text: str) -> Optional[str]:
    match = RX_PERIOD.search(text)
    if not match:
        return None
    return to_period_folder_name(match.group(1), match.group(2))


def find_amount(text: str) -> Optional[Decimal]:
    for match in RX_AMOUNT.finditer(text):
        value = normalize_amount(match.group(1))
        if value is not None:
            return value
    return None


def find_due_date(text: str) -> Optional[str]:
    match = RX_DUE_DATE.search(text)
    if not match:
        return None
    day, month, year = match.groups()
    if len(year) == 2:
        year = f"20{year}"
    return f"{day.zfill(2)}/{month.zfill(2)}/{year}"


def extract(raw_text: Optional[str]) -> ExtractedFields:
    """Run every extraction rule over the same normalized text."""
    lines = normalize_lines(raw_text)
    joined = "\n".join(lines)

    tax_id, tax_id_line = find_tax_id(lines)
    return ExtractedFields(
        entity=find_entity(lines, tax_id_line),
        tax_id=tax_id,
        period=find_period(joined),
        amount=find_amount(joined),
        due_date=find_due_date(joined),
    )
