from typing import TypedDict, List, Dict, Optional, Any

# ============================================================================
# Catalog & Existing Records (read-only inputs)
# ============================================================================

class DocumentTypeEntry(TypedDict, total=False):
    """
    A known document type from the tenant's catalog.
    Mirrors a row of the portal's `document_types` table.

    Codes are short uppercase identifiers: NR35, ASO, CNH, RG, ...
    """
    id: str
    code: str
    name: str
    default_validity_years: Optional[int]  # None = never expires by default
    description: Optional[str]
    is_active: bool
    company_id: Optional[str]  # Tenant scope, None = shared by every company


class ExistingDocumentRecord(TypedDict, total=False):
    """
    One document already stored for an employee.
    Supplied by an external query, never modified here.
    """
    id: str
    document_type_id: str
    expiration_date: Optional[str]  # ISO YYYY-MM-DD
    file_path: Optional[str]


# ============================================================================
# Raw AI Output (untrusted)
# ============================================================================

class SignaturePayload(TypedDict, total=False):
    """
    Signature block as returned by the vision model.

    `has_responsible_signature` is the legacy name of the company
    signature field and still appears in older prompts.
    """
    count: int
    has_company_signature: bool
    has_responsible_signature: bool
    has_instructor_signature: bool
    has_employee_signature: bool
    is_fully_signed: bool
    details: str


class RawScanResult(TypedDict, total=False):
    """
    Best-effort structured guess for one scanned file.
    Any field may be missing or contradict another one.
    """
    fileName: str
    success: bool
    error: Optional[str]
    document_type_code: Optional[str]
    document_type_name: Optional[str]
    emission_date: Optional[str]
    expiration_date: Optional[str]
    observations: Optional[str]
    confidence: Optional[float]
    signatures: Optional[SignaturePayload]
    employee_id: Optional[str]  # Overrides the batch employee when set


# ============================================================================
# Audit Inputs / Outputs
# ============================================================================

class StoredDocument(TypedDict, total=False):
    """
    A persisted document joined with its type and employee,
    as read by the nightly compliance audit.
    """
    id: str
    expiration_date: Optional[str]
    observations: Optional[str]
    status: Optional[str]  # 'pending' | 'approved' | 'rejected' | 'expired'
    file_path: Optional[str]
    document_type: Dict[str, Any]  # {'code': ..., 'name': ...}
    employee: Dict[str, Any]  # {'id', 'full_name', 'company_id', 'status'}


class DocumentIssue(TypedDict):
    """
    A compliance problem found on a stored document.
    """
    id: str
    employee_name: str
    document_type: str
    issue_type: str  # 'missing_signature' | 'missing_date' | 'incomplete'
    company_id: Optional[str]
    employee_id: Optional[str]


class ExpiringDocument(TypedDict):
    """
    A document expiring inside the alert window.
    """
    id: str
    employee_name: str
    document_type: str
    expiration_date: str
    days_until: int


# ============================================================================
# Main Batch State
# ============================================================================

class ScanBatchState(TypedDict, total=False):
    """
    The central state of the resolution graph.
    This dict is passed and updated by every node in the graph.
    """
    # Meta Information
    batch_id: str
    status: str  # 'Processing', 'Resolved', 'Failed'
    company_id: Optional[str]
    employee_id: Optional[str]

    # Raw model responses keyed by file: [{'fileName': ..., 'content': ...}]
    ai_responses: List[Dict[str, Any]]
    raw_results: List[RawScanResult]

    # Snapshots supplied by the caller
    catalog: List[DocumentTypeEntry]
    existing_documents: Dict[str, List[ExistingDocumentRecord]]  # By employee id
    stored_documents: List[StoredDocument]

    # Resolution output
    resolved_documents: List[Dict[str, Any]]
    created_types: List[DocumentTypeEntry]
    resolver_metrics: Dict[str, Any]

    # Audit output
    document_issues: List[DocumentIssue]
    expiring_documents: List[ExpiringDocument]
    audit_report: Dict[str, Any]
