"""
Signature Scorer - Signature completeness for training certificates

NR certificates carry three signature fields:
1. Company / contracting party (left or first field)
2. Instructor / technician (center or second field)
3. Employee / trainee (right or third field)

The vision model reports a count and one boolean per role, with field
names that drifted over time (`has_responsible_signature` is the legacy
name of the company field). This module reconciles the payload into one
canonical judgment and formats the summary line stored in the document's
observations.

The summary line is read back by the nightly audit, which looks for the
literal substrings "Assinaturas:" and "Assinaturas: 3/3". Its format
must not change:

    Assinaturas: 2/3 (Empresa ✓, Instrutor ✓, Funcionário ✗) - Parcialmente assinado
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

REQUIRED_SIGNATURES = 3

SIGNED_MARK = "✓"
UNSIGNED_MARK = "✗"

STATUS_FULLY_SIGNED = "Completamente assinado"
STATUS_PARTIALLY_SIGNED = "Parcialmente assinado"
STATUS_UNSIGNED = "Sem assinaturas"

SUMMARY_PREFIX = "Assinaturas:"
COMPLETE_SUMMARY_MARKER = "Assinaturas: 3/3"

# Role key -> label used in summaries
ROLE_LABELS: Dict[str, str] = {
    "company": "Empresa",
    "instructor": "Instrutor",
    "employee": "Funcionário",
}

# Legacy wording found in observations written before the summary format
LEGACY_SIGNATURE_MARKERS = (
    "assinatura",
    "assinado",
    "signature",
)
LEGACY_COMPLETE_MARKERS = (
    "completamente assinado",
    "3 assinaturas",
    "todas as assinaturas",
)

TRUE_STRINGS = frozenset({"true", "sim", "yes", "1", "s", "y"})
FALSE_STRINGS = frozenset({"false", "nao", "não", "no", "0", "n", ""})


# ============================================================================
# Payload Normalization
# ============================================================================

def coerce_bool(value: Any) -> Optional[bool]:
    """
    Interpret a loosely-typed boolean from model output.

    Returns:
        True/False, or None when the value is absent or not boolean-like
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
    return None


def coerce_count(value: Any) -> Optional[int]:
    """Parse the signature count and clamp it to 0..3."""
    if value is None or isinstance(value, bool):
        return None
    try:
        count = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return max(0, min(REQUIRED_SIGNATURES, count))


@dataclass(frozen=True)
class NormalizedSignatures:
    """Signature payload after field-name reconciliation."""

    count: int
    company: bool
    instructor: bool
    employee: bool
    count_was_reported: bool = True

    @property
    def roles_signed(self) -> int:
        return sum([self.company, self.instructor, self.employee])


def normalize_signature_payload(raw: Optional[Mapping[str, Any]]) -> NormalizedSignatures:
    """
    Reconcile a raw signature payload into canonical fields.

    - `has_company_signature` wins over the legacy `has_responsible_signature`
      whenever it is present.
    - A missing or stale count is raised to the number of signed roles.
    """
    raw = raw or {}

    company = coerce_bool(raw.get("has_company_signature"))
    if company is None:
        company = coerce_bool(raw.get("has_responsible_signature"))
    instructor = coerce_bool(raw.get("has_instructor_signature"))
    employee = coerce_bool(raw.get("has_employee_signature"))

    company = bool(company)
    instructor = bool(instructor)
    employee = bool(employee)

    reported = coerce_count(raw.get("count"))
    roles_signed = sum([company, instructor, employee])
    count = roles_signed if reported is None else max(reported, roles_signed)

    return NormalizedSignatures(
        count=count,
        company=company,
        instructor=instructor,
        employee=employee,
        count_was_reported=reported is not None,
    )


# ============================================================================
# Scoring
# ============================================================================

@dataclass(frozen=True)
class SignatureScore:
    """Canonical signature judgment for one document."""

    count: int
    per_role: Dict[str, bool] = field(default_factory=dict)
    fully_signed: bool = False
    summary: str = ""
    details: str = ""

    @property
    def status(self) -> str:
        return signature_status(self.count, self.fully_signed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "per_role": dict(self.per_role),
            "fully_signed": self.fully_signed,
            "status": self.status,
            "summary": self.summary,
            "details": self.details,
        }


def signature_status(count: int, fully_signed: bool) -> str:
    """Status wording for a signature count."""
    if fully_signed or count == REQUIRED_SIGNATURES:
        return STATUS_FULLY_SIGNED
    if count > 0:
        return STATUS_PARTIALLY_SIGNED
    return STATUS_UNSIGNED


def _mark(signed: bool) -> str:
    return SIGNED_MARK if signed else UNSIGNED_MARK


def format_signature_summary(count: int, per_role: Mapping[str, bool], fully_signed: bool) -> str:
    """
    Build the persisted summary line.

    Example:
        Assinaturas: 3/3 (Empresa ✓, Instrutor ✓, Funcionário ✓) - Completamente assinado
    """
    parts = ", ".join(
        f"{label} {_mark(per_role.get(role, False))}"
        for role, label in ROLE_LABELS.items()
    )
    status = signature_status(count, fully_signed)
    return f"{SUMMARY_PREFIX} {count}/{REQUIRED_SIGNATURES} ({parts}) - {status}"


def format_signature_details(per_role: Mapping[str, bool]) -> str:
    """Tooltip form: 'Empresa: ✓ | Instrutor: ✗ | Funcionário: ✗'."""
    return " | ".join(
        f"{label}: {_mark(per_role.get(role, False))}"
        for role, label in ROLE_LABELS.items()
    )


def score_signatures(raw: Optional[Mapping[str, Any]]) -> SignatureScore:
    """
    Score a raw signature payload.

    `fully_signed` is true when the count reaches 3 or when every role is
    signed. The two signals are checked independently so a missing or
    stale count cannot hide a complete document.

    Args:
        raw: Signature block from the model (None is scored as unsigned)

    Returns:
        SignatureScore with summary and details strings
    """
    normalized = normalize_signature_payload(raw)
    per_role = {
        "company": normalized.company,
        "instructor": normalized.instructor,
        "employee": normalized.employee,
    }

    all_roles = all(per_role.values())
    fully_signed = normalized.count == REQUIRED_SIGNATURES or all_roles

    if raw and coerce_bool(raw.get("is_fully_signed")) and not fully_signed:
        logger.debug(
            f"Model reported is_fully_signed with only {normalized.count} signature(s)"
        )

    return SignatureScore(
        count=normalized.count,
        per_role=per_role,
        fully_signed=fully_signed,
        summary=format_signature_summary(normalized.count, per_role, fully_signed),
        details=format_signature_details(per_role),
    )


# ============================================================================
# Observation Helpers (summary readers)
# ============================================================================

def merge_observations(observations: Optional[str], summary: Optional[str]) -> str:
    """
    Append the signature summary to the model's free-text observations.

    Any summary line already present is replaced so that rescans do not
    stack multiple lines.
    """
    lines = [
        line for line in (observations or "").splitlines()
        if line.strip() and not line.strip().startswith(SUMMARY_PREFIX)
    ]
    if summary:
        lines.append(summary)
    return "\n".join(lines)


def has_signature_info(observations: Optional[str]) -> bool:
    """Check if observations record any signature verification."""
    if not observations:
        return False
    if SUMMARY_PREFIX in observations:
        return True
    lowered = observations.lower()
    return any(marker in lowered for marker in LEGACY_SIGNATURE_MARKERS)


def is_signature_complete(observations: Optional[str]) -> bool:
    """Check if observations record a fully signed document."""
    if not observations:
        return False
    if COMPLETE_SUMMARY_MARKER in observations:
        return True
    lowered = observations.lower()
    return any(marker in lowered for marker in LEGACY_COMPLETE_MARKERS)
