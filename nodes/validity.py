"""
Validity Resolver - Authoritative expiration dates for scanned documents

Training certificates (NR-xx) usually show only the training date; the
catalog knows how many years each type stays valid. This module decides
which expiration date a scanned document gets:

1. An explicit expiration printed on the document always wins.
2. Types without a default validity never expire.
3. Emission date + validity years - 1 day.
4. No emission date: today + validity years - 1 day (approximate).

The rule order is significant and must not change.
"""

import logging
from datetime import date, datetime, timedelta
from dataclasses import dataclass
from typing import Any, Dict, Optional

from state import DocumentTypeEntry

logger = logging.getLogger(__name__)


# ============================================================================
# Date Parsing
# ============================================================================

# ISO first; the model is asked for YYYY-MM-DD but Brazilian formats leak through
DATE_FORMATS = [
    "%Y-%m-%d",      # 2025-12-31 (ISO)
    "%d/%m/%Y",      # 31/12/2025
    "%d-%m-%Y",      # 31-12-2025
    "%d.%m.%Y",      # 31.12.2025
    "%Y/%m/%d",      # 2025/12/31
]

# Strings the model emits instead of JSON null
NULL_DATE_STRINGS = frozenset({"", "null", "none", "n/a", "nao informado", "não informado"})


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a document date.

    Accepts date/datetime objects, ISO strings (with or without a time
    part) and common Brazilian day-first formats.

    Returns:
        The parsed date, or None when the value is missing or unparseable
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        logger.warning(f"Ignoring non-string date value: {value!r}")
        return None

    cleaned = value.strip()
    if cleaned.lower() in NULL_DATE_STRINGS:
        return None

    # "2025-01-09T00:00:00Z" style timestamps
    if len(cleaned) > 10 and cleaned[4:5] == "-" and cleaned[10:11] in ("T", " "):
        cleaned = cleaned[:10]

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue

    logger.warning(f"Unparseable date treated as absent: {value!r}")
    return None


def format_date(value: Optional[date]) -> Optional[str]:
    """Format a date as ISO YYYY-MM-DD (None passes through)."""
    if value is None:
        return None
    return value.isoformat()


# ============================================================================
# Validity Arithmetic
# ============================================================================

def add_years(start: date, years: int) -> date:
    """
    Add calendar years to a date.

    29 February rolls over to 1 March when the target year is not a
    leap year.
    """
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        return date(start.year + years, 3, 1)


def compute_expiration(start: date, validity_years: int) -> date:
    """
    Expiration for a document valid `validity_years` from `start`.

    The document expires the day before the anniversary:
    issued 2024-01-10 with 1 year of validity expires 2025-01-09.
    """
    return add_years(start, validity_years) - timedelta(days=1)


def get_validity_years(matched_type: Optional[DocumentTypeEntry]) -> Optional[int]:
    """
    Default validity of a catalog entry in years.

    Missing, null, zero, negative or non-numeric values mean the type has
    no standard validity.
    """
    if not matched_type:
        return None
    raw = matched_type.get("default_validity_years")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        years = int(raw)
    except (TypeError, ValueError):
        logger.warning(
            f"Invalid default_validity_years {raw!r} on type {matched_type.get('code')}"
        )
        return None
    return years if years > 0 else None


# ============================================================================
# Resolver
# ============================================================================

@dataclass(frozen=True)
class ValidityResult:
    """Outcome of validity resolution for one document."""

    expiration_date: Optional[date]
    computed: bool
    has_validity: bool
    validity_years: Optional[int] = None
    basis: str = "none"  # 'explicit', 'emission_date', 'today', 'none'

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expiration_date": format_date(self.expiration_date),
            "computed": self.computed,
            "has_validity": self.has_validity,
            "validity_years": self.validity_years,
            "basis": self.basis,
        }


def resolve_validity(
    explicit_expiration: Optional[date],
    emission_date: Optional[date],
    matched_type: Optional[DocumentTypeEntry],
    today: Optional[date] = None,
) -> ValidityResult:
    """
    Compute the authoritative expiration date.

    Args:
        explicit_expiration: Expiration printed on the document
        emission_date: Emission/training date printed on the document
        matched_type: Matched catalog entry, or None
        today: Reference date for the no-emission fallback (defaults to today)

    Returns:
        ValidityResult
    """
    validity_years = get_validity_years(matched_type)

    if explicit_expiration is not None:
        return ValidityResult(
            expiration_date=explicit_expiration,
            computed=False,
            has_validity=True,
            validity_years=validity_years,
            basis="explicit",
        )

    if validity_years is None:
        return ValidityResult(
            expiration_date=None,
            computed=False,
            has_validity=False,
            basis="none",
        )

    if emission_date is not None:
        return ValidityResult(
            expiration_date=compute_expiration(emission_date, validity_years),
            computed=True,
            has_validity=True,
            validity_years=validity_years,
            basis="emission_date",
        )

    # Approximation: keeps validity-tracked documents from having no expiration
    reference = today or date.today()
    return ValidityResult(
        expiration_date=compute_expiration(reference, validity_years),
        computed=True,
        has_validity=True,
        validity_years=validity_years,
        basis="today",
    )
