"""
Update Detector - Decide whether a scan replaces an existing document

An employee normally holds one document per type. When a new scan
arrives for a type the employee already has, the scan should overwrite
the stored record if it is "fresher":

- its expiration is later than the stored one (renewal)
- the stored one has no expiration and the scan has one
- the stored one is already expired

Anything else is treated as a new record. Duplicate prevention is the
caller's responsibility.
"""

import logging
from datetime import date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from state import ExistingDocumentRecord
from nodes.validity import parse_date

logger = logging.getLogger(__name__)


REASON_EXTENDS_VALIDITY = "extends_validity"
REASON_FILLS_MISSING_VALIDITY = "fills_missing_validity"
REASON_REPLACES_EXPIRED = "replaces_expired"


@dataclass(frozen=True)
class UpdateDecision:
    """Whether a scan should update an existing record."""

    is_update: bool
    existing_id: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_update": self.is_update,
            "existing_id": self.existing_id,
            "reason": self.reason,
        }


NOT_AN_UPDATE = UpdateDecision(is_update=False)


def find_existing_for_type(
    type_id: str,
    existing_docs: List[ExistingDocumentRecord],
) -> Optional[ExistingDocumentRecord]:
    """
    First stored document with the given type id, in input order.

    More than one record per employee and type is a data-quality issue;
    it is tolerated and the first one wins.
    """
    candidates = [d for d in existing_docs if d.get("document_type_id") == type_id]
    if len(candidates) > 1:
        logger.warning(
            f"{len(candidates)} existing documents share type {type_id}; "
            f"using {candidates[0].get('id')}"
        )
    return candidates[0] if candidates else None


def detect_update(
    matched_type_id: Optional[str],
    new_expiration: Optional[date],
    existing_docs: List[ExistingDocumentRecord],
    today: Optional[date] = None,
) -> UpdateDecision:
    """
    Decide update vs. new record for a resolved scan.

    Args:
        matched_type_id: Catalog type of the scan (None when unmatched)
        new_expiration: Resolved expiration of the scan
        existing_docs: The employee's stored documents
        today: Reference date for "already expired" (defaults to today)

    Returns:
        UpdateDecision
    """
    if not matched_type_id:
        return NOT_AN_UPDATE

    existing = find_existing_for_type(matched_type_id, existing_docs or [])
    if existing is None:
        return NOT_AN_UPDATE

    existing_id = existing.get("id")
    existing_expiration = parse_date(existing.get("expiration_date"))

    if new_expiration is not None and existing_expiration is not None:
        if new_expiration > existing_expiration:
            return UpdateDecision(True, existing_id, REASON_EXTENDS_VALIDITY)

    if new_expiration is not None and existing_expiration is None:
        return UpdateDecision(True, existing_id, REASON_FILLS_MISSING_VALIDITY)

    reference = today or date.today()
    if existing_expiration is not None and existing_expiration < reference:
        return UpdateDecision(True, existing_id, REASON_REPLACES_EXPIRED)

    return NOT_AN_UPDATE
