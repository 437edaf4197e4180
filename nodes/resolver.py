"""
Document Resolver Node - Batch resolution of scanned documents

Takes a batch of raw model results for an employee's scanned files and
resolves each one into a structured record ready for persistence:

1. Type matching against the catalog (nodes.type_matcher)
2. Expiration resolution (nodes.validity)
3. Update-vs-new detection against stored documents (nodes.update_detector)
4. Signature scoring (nodes.signatures)

Batch guarantees:
- Output is 1:1 with input and keeps input order
- Failed scans pass through as failure markers carrying only the error
- A malformed or failing item never affects its siblings

Auto-creation of unknown document types is a caller decision: the
orchestrator only invokes the `on_unmatched` hook it is given.
"""

import os
import time
import logging
from datetime import date
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from state import (
    DocumentTypeEntry,
    ExistingDocumentRecord,
    RawScanResult,
    ScanBatchState,
)
from nodes.type_matcher import (
    MatchStrategy,
    match_type_with_strategy,
    should_auto_create,
)
from nodes.validity import format_date, parse_date, resolve_validity
from nodes.update_detector import detect_update
from nodes.signatures import SignatureScore, merge_observations, score_signatures
from nodes.scan_parser import (
    MalformedScanResultError,
    UNKNOWN_FAILURE_ERROR,
    coerce_raw_result,
    get_file_name,
)

logger = logging.getLogger(__name__)

# Caller hook: (raw_code, raw_name) -> newly created catalog entry or None
UnmatchedTypeHandler = Callable[[str, Optional[str]], Optional[DocumentTypeEntry]]


# ============================================================================
# Resolved Document
# ============================================================================

@dataclass(frozen=True)
class ResolvedDocument:
    """
    Structured outcome for one scanned file.

    A failure marker has `success=False`, an `error`, and nothing else set.
    """
    file_name: str
    success: bool = True
    error: Optional[str] = None

    # Type matching
    matched_type_id: Optional[str] = None
    matched_type_code: Optional[str] = None
    matched_type_name: Optional[str] = None
    match_strategy: Optional[str] = None
    type_auto_created: bool = False

    # Validity
    resolved_expiration_date: Optional[date] = None
    expiration_was_computed: bool = False
    has_validity: bool = False
    validity_years: Optional[int] = None
    emission_date: Optional[date] = None

    # Update detection
    is_update_candidate: bool = False
    existing_document_id: Optional[str] = None
    update_reason: Optional[str] = None

    # Signatures
    signature_summary: Optional[SignatureScore] = None
    observations: str = ""

    # Raw guesses kept for manual review
    document_type_code: Optional[str] = None
    document_type_name: Optional[str] = None
    confidence: float = 0.0
    employee_id: Optional[str] = None

    @classmethod
    def failure(cls, file_name: str, error: Optional[str]) -> "ResolvedDocument":
        """Failure marker for a scan that could not be resolved."""
        return cls(file_name=file_name, success=False, error=error or UNKNOWN_FAILURE_ERROR)

    @property
    def is_matched(self) -> bool:
        return self.matched_type_id is not None

    @property
    def is_fully_signed(self) -> bool:
        return bool(self.signature_summary and self.signature_summary.fully_signed)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        if not self.success:
            return {
                "file_name": self.file_name,
                "success": False,
                "error": self.error,
            }
        return {
            "file_name": self.file_name,
            "success": True,
            "error": None,
            "employee_id": self.employee_id,
            "matched_type_id": self.matched_type_id,
            "matched_type_code": self.matched_type_code,
            "matched_type_name": self.matched_type_name,
            "match_strategy": self.match_strategy,
            "type_auto_created": self.type_auto_created,
            "resolved_expiration_date": format_date(self.resolved_expiration_date),
            "expiration_was_computed": self.expiration_was_computed,
            "has_validity": self.has_validity,
            "validity_years": self.validity_years,
            "emission_date": format_date(self.emission_date),
            "is_update_candidate": self.is_update_candidate,
            "existing_document_id": self.existing_document_id,
            "update_reason": self.update_reason,
            "signature_summary": (
                self.signature_summary.to_dict() if self.signature_summary else None
            ),
            "observations": self.observations,
            "document_type_code": self.document_type_code,
            "document_type_name": self.document_type_name,
            "confidence": self.confidence,
        }


# ============================================================================
# Resolver Configuration & Metrics
# ============================================================================

@dataclass
class ResolverConfig:
    """Configuration for batch resolution."""

    # Create catalog entries for unmatched, non-sentinel codes
    auto_create_types: bool = False

    # Append the signature summary line to observations
    append_signature_summary: bool = True


@dataclass
class ResolverMetrics:
    """Counters for one resolved batch."""

    total_documents: int = 0
    documents_failed: int = 0
    documents_matched: int = 0
    documents_unmatched: int = 0
    types_auto_created: int = 0

    expirations_explicit: int = 0
    expirations_computed: int = 0
    documents_without_validity: int = 0

    update_candidates: int = 0
    fully_signed: int = 0

    matches_by_strategy: Dict[str, int] = field(default_factory=dict)
    total_processing_time_ms: float = 0.0

    def record(self, doc: ResolvedDocument) -> None:
        """Count one resolved document."""
        self.total_documents += 1
        if not doc.success:
            self.documents_failed += 1
            return

        if doc.is_matched:
            self.documents_matched += 1
            if doc.match_strategy:
                self.matches_by_strategy[doc.match_strategy] = \
                    self.matches_by_strategy.get(doc.match_strategy, 0) + 1
        else:
            self.documents_unmatched += 1
        if doc.type_auto_created:
            self.types_auto_created += 1

        if doc.expiration_was_computed:
            self.expirations_computed += 1
        elif doc.resolved_expiration_date is not None:
            self.expirations_explicit += 1
        if not doc.has_validity:
            self.documents_without_validity += 1

        if doc.is_update_candidate:
            self.update_candidates += 1
        if doc.is_fully_signed:
            self.fully_signed += 1

    @property
    def documents_succeeded(self) -> int:
        return self.total_documents - self.documents_failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_documents": self.total_documents,
            "documents_succeeded": self.documents_succeeded,
            "documents_failed": self.documents_failed,
            "documents_matched": self.documents_matched,
            "documents_unmatched": self.documents_unmatched,
            "types_auto_created": self.types_auto_created,
            "expirations_explicit": self.expirations_explicit,
            "expirations_computed": self.expirations_computed,
            "documents_without_validity": self.documents_without_validity,
            "update_candidates": self.update_candidates,
            "fully_signed": self.fully_signed,
            "matches_by_strategy": dict(self.matches_by_strategy),
            "total_processing_time_ms": round(self.total_processing_time_ms, 2),
        }


@dataclass
class BatchResolution:
    """All resolved documents of a batch plus its metrics."""

    documents: List[ResolvedDocument] = field(default_factory=list)
    metrics: ResolverMetrics = field(default_factory=ResolverMetrics)
    created_types: List[DocumentTypeEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.documents)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documents": [d.to_dict() for d in self.documents],
            "metrics": self.metrics.to_dict(),
            "created_types": list(self.created_types),
        }


# ============================================================================
# Single Document Resolution
# ============================================================================

def _coerce_confidence(value: Any) -> float:
    try:
        return max(0.0, min(1.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


def resolve_document(
    raw: RawScanResult,
    catalog: List[DocumentTypeEntry],
    existing_docs: List[ExistingDocumentRecord],
    on_unmatched: Optional[UnmatchedTypeHandler] = None,
    config: Optional[ResolverConfig] = None,
    today: Optional[date] = None,
    employee_id: Optional[str] = None,
) -> ResolvedDocument:
    """
    Resolve one raw scan result.

    Args:
        raw: Raw scan result (scaffolding already validated)
        catalog: Catalog snapshot; an auto-created entry is appended to it
        existing_docs: The employee's stored documents
        on_unmatched: Caller hook for auto-creating unknown types
        config: Resolver configuration
        today: Reference date for validity and expiry checks
        employee_id: Employee the document belongs to

    Returns:
        ResolvedDocument
    """
    config = config or ResolverConfig()
    file_name = raw["fileName"]

    if not raw.get("success"):
        return ResolvedDocument.failure(file_name, raw.get("error"))

    raw_code = raw.get("document_type_code") or None
    raw_name = raw.get("document_type_name") or None

    # 1. Type matching
    matched: Optional[DocumentTypeEntry] = None
    strategy: Optional[str] = None
    auto_created = False

    type_match = match_type_with_strategy(raw_code, raw_name, catalog)
    if type_match:
        matched = type_match.entry
        strategy = type_match.strategy.value
    elif on_unmatched is not None and raw_code and should_auto_create(raw_code):
        try:
            matched = on_unmatched(raw_code, raw_name)
        except Exception as e:
            logger.error(f"Auto-creating type {raw_code!r} for {file_name} failed: {e}")
            matched = None
        if matched:
            auto_created = True
            catalog.append(matched)

    # 2. Validity
    validity = resolve_validity(
        parse_date(raw.get("expiration_date")),
        parse_date(raw.get("emission_date")),
        matched,
        today=today,
    )

    # 3. Update detection
    matched_type_id = matched.get("id") if matched else None
    decision = detect_update(
        matched_type_id,
        validity.expiration_date,
        existing_docs,
        today=today,
    )

    # 4. Signatures
    signatures = raw.get("signatures")
    score = score_signatures(signatures if isinstance(signatures, Mapping) else None)
    observations = raw.get("observations") or ""
    if config.append_signature_summary:
        observations = merge_observations(observations, score.summary)

    return ResolvedDocument(
        file_name=file_name,
        success=True,
        matched_type_id=matched_type_id,
        matched_type_code=matched.get("code") if matched else None,
        matched_type_name=matched.get("name") if matched else None,
        match_strategy=strategy,
        type_auto_created=auto_created,
        resolved_expiration_date=validity.expiration_date,
        expiration_was_computed=validity.computed,
        has_validity=validity.has_validity,
        validity_years=validity.validity_years,
        emission_date=parse_date(raw.get("emission_date")),
        is_update_candidate=decision.is_update,
        existing_document_id=decision.existing_id,
        update_reason=decision.reason,
        signature_summary=score,
        observations=observations,
        document_type_code=raw_code,
        document_type_name=raw_name,
        confidence=_coerce_confidence(raw.get("confidence")),
        employee_id=employee_id,
    )


# ============================================================================
# Batch Resolution
# ============================================================================

def _fallback_file_name(item: Any, index: int) -> str:
    if isinstance(item, Mapping):
        name = get_file_name(item)
        if name:
            return name
    return f"item-{index + 1}"


def resolve_batch(
    raw_results: List[Any],
    catalog: List[DocumentTypeEntry],
    existing_docs_by_employee: Optional[Mapping[str, List[ExistingDocumentRecord]]] = None,
    employee_id: Optional[str] = None,
    on_unmatched: Optional[UnmatchedTypeHandler] = None,
    config: Optional[ResolverConfig] = None,
    today: Optional[date] = None,
) -> BatchResolution:
    """
    Resolve a batch of raw scan results.

    Args:
        raw_results: Raw results, one per scanned file
        catalog: Catalog snapshot (not modified; a working copy is used)
        existing_docs_by_employee: Stored documents keyed by employee id
        employee_id: Employee for items that do not name one
        on_unmatched: Caller hook for auto-creating unknown types
        config: Resolver configuration
        today: Reference date for validity and expiry checks

    Returns:
        BatchResolution with one document per input item, in input order
    """
    config = config or ResolverConfig()
    start_time = time.time()

    working_catalog = list(catalog)
    existing_by_employee = existing_docs_by_employee or {}
    batch = BatchResolution()

    for index, item in enumerate(raw_results):
        try:
            raw = coerce_raw_result(item, fallback_name=f"item-{index + 1}")
            item_employee = raw.get("employee_id") or employee_id
            existing_docs = list(existing_by_employee.get(item_employee, [])) if item_employee else []

            catalog_size = len(working_catalog)
            doc = resolve_document(
                raw,
                working_catalog,
                existing_docs,
                on_unmatched=on_unmatched,
                config=config,
                today=today,
                employee_id=item_employee,
            )
            if len(working_catalog) > catalog_size:
                batch.created_types.extend(working_catalog[catalog_size:])
        except MalformedScanResultError as e:
            logger.warning(f"Malformed scan result #{index + 1}: {e}")
            doc = ResolvedDocument.failure(
                e.file_name or _fallback_file_name(item, index), str(e)
            )
        except Exception as e:
            logger.exception(f"Unexpected error resolving scan result #{index + 1}")
            doc = ResolvedDocument.failure(_fallback_file_name(item, index), str(e))

        batch.documents.append(doc)
        batch.metrics.record(doc)

    batch.metrics.total_processing_time_ms = (time.time() - start_time) * 1000
    return batch


# ============================================================================
# Main Node Function
# ============================================================================

def _auto_create_handler(company_id: Optional[str]) -> UnmatchedTypeHandler:
    """Hook that persists unknown types in the catalog store."""
    import catalog_storage

    def handler(code: str, name: Optional[str]) -> Optional[DocumentTypeEntry]:
        return catalog_storage.create_auto_detected_type(code, name, company_id=company_id)

    return handler


def document_resolver_node(state: ScanBatchState) -> dict:
    """
    Node B: Document Resolver

    Resolves every raw scan result of the batch and reports metrics.

    Process:
    1. For each raw result
    2. Match its type against the catalog (optionally auto-creating it)
    3. Resolve its expiration date
    4. Check whether it updates a stored document
    5. Score its signatures
    6. Track metrics

    Returns:
        dict with resolved_documents, created_types and resolver_metrics
    """
    print("--- NODE: Resolver ---")

    config = ResolverConfig(
        auto_create_types=os.getenv("RESOLVER_AUTO_CREATE_TYPES", "false").lower() == "true",
        append_signature_summary=os.getenv("RESOLVER_APPEND_SIGNATURE_SUMMARY", "true").lower() == "true",
    )

    raw_results = state.get("raw_results", [])
    on_unmatched = (
        _auto_create_handler(state.get("company_id")) if config.auto_create_types else None
    )

    batch = resolve_batch(
        raw_results,
        state.get("catalog", []),
        state.get("existing_documents", {}),
        employee_id=state.get("employee_id"),
        on_unmatched=on_unmatched,
        config=config,
    )

    for doc in batch.documents:
        if not doc.success:
            print(f"   ✗ {doc.file_name}: {doc.error}")
            continue
        type_label = doc.matched_type_code or f"? ({doc.document_type_code or 'sem código'})"
        expiration = format_date(doc.resolved_expiration_date) or "sem validade"
        computed_note = " (calculada)" if doc.expiration_was_computed else ""
        update_note = " ↻ atualização" if doc.is_update_candidate else ""
        print(f"   {doc.file_name}: {type_label} → {expiration}{computed_note}{update_note}")

    metrics = batch.metrics
    print(f"   Resolved {metrics.documents_succeeded}/{metrics.total_documents} documents")
    if metrics.documents_unmatched > 0:
        print(f"   ⚠️  {metrics.documents_unmatched} document(s) need manual classification")
    if metrics.update_candidates > 0:
        print(f"   ↻ {metrics.update_candidates} update(s) to existing documents")

    return {
        "resolved_documents": [d.to_dict() for d in batch.documents],
        "created_types": batch.created_types,
        "resolver_metrics": metrics.to_dict(),
        "catalog": list(state.get("catalog", [])) + batch.created_types,
        "status": "Resolved",
    }
