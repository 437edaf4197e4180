"""
Compliance Auditor Node - Nightly audit of stored employee documents

As an HR administrator, I need to know every morning:
- Which training certificates and health exams are about to expire
- Which uploaded NR/ASO documents were never verified as signed
- Which NR/ASO documents have no expiration date at all

Rules:
- Only uploaded documents (non-empty file_path) are checked for issues
- Terminated employees (status DEMITIDO) are ignored entirely
- Only documents that require validity (NR family, ASO) raise issues
- Expiring = expires between today and today + window (default 30 days),
  excluding documents already marked expired

Message composition only; delivery (WhatsApp, in-app) belongs to the caller.
"""

import os
import logging
from datetime import date, datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from state import DocumentIssue, ExpiringDocument, ScanBatchState, StoredDocument
from nodes.validity import format_date, parse_date
from nodes.signatures import has_signature_info

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

TERMINATED_EMPLOYEE_STATUS = "DEMITIDO"
EXPIRED_DOCUMENT_STATUS = "expired"

ISSUE_MISSING_SIGNATURE = "missing_signature"
ISSUE_MISSING_DATE = "missing_date"
ISSUE_INCOMPLETE = "incomplete"

DEFAULT_EXPIRING_WINDOW_DAYS = 30
URGENT_DAYS = 3
WARNING_DAYS = 7

# Issues listed per section of the alert before collapsing into "...e mais N"
ALERT_ISSUE_LIMIT = 5

UNKNOWN_EMPLOYEE_NAME = "Desconhecido"
UNKNOWN_DOCUMENT_NAME = "Documento"

ISSUE_MESSAGES = {
    ISSUE_MISSING_SIGNATURE: '✍️ Documento "{document_type}" de {employee_name} está SEM ASSINATURA verificada',
    ISSUE_MISSING_DATE: '📅 Documento "{document_type}" de {employee_name} está SEM DATA DE VALIDADE',
    ISSUE_INCOMPLETE: '⚠️ Documento "{document_type}" de {employee_name} está INCOMPLETO',
}


# ============================================================================
# Document Helpers
# ============================================================================

def requires_validity(code: Optional[str], name: Optional[str]) -> bool:
    """
    Check if a document type must carry an expiration date.

    NR-family certificates and ASO health exams do.
    """
    if not code and not name:
        return False
    code = (code or "").upper()
    name = (name or "").upper()
    return (
        code.startswith("NR")
        or code == "ASO"
        or "NR" in name
        or "ASO" in name
        or "ATESTADO DE SAÚDE" in name
    )


def _employee(doc: StoredDocument) -> Dict[str, Any]:
    return doc.get("employee") or {}


def _document_type(doc: StoredDocument) -> Dict[str, Any]:
    return doc.get("document_type") or {}


def is_terminated(doc: StoredDocument) -> bool:
    return (_employee(doc).get("status") or "").upper() == TERMINATED_EMPLOYEE_STATUS


def is_uploaded(doc: StoredDocument) -> bool:
    return bool((doc.get("file_path") or "").strip())


def days_until(expiration: date, today: date) -> int:
    """Whole days from today to the expiration date (negative when past)."""
    return (expiration - today).days


def document_status(
    expiration: Any,
    today: Optional[date] = None,
    window_days: int = DEFAULT_EXPIRING_WINDOW_DAYS,
) -> str:
    """
    Dashboard status of a document by its expiration date.

    Returns:
        'no_expiration', 'expired', 'expiring' (within window_days) or 'valid'
    """
    expiration_date = parse_date(expiration)
    if expiration_date is None:
        return "no_expiration"

    remaining = days_until(expiration_date, today or date.today())
    if remaining < 0:
        return "expired"
    if remaining <= window_days:
        return "expiring"
    return "valid"


# ============================================================================
# Audit Checks
# ============================================================================

def _make_issue(doc: StoredDocument, issue_type: str) -> DocumentIssue:
    employee = _employee(doc)
    return {
        "id": doc.get("id"),
        "employee_name": employee.get("full_name") or UNKNOWN_EMPLOYEE_NAME,
        "document_type": _document_type(doc).get("name") or UNKNOWN_DOCUMENT_NAME,
        "issue_type": issue_type,
        "company_id": employee.get("company_id"),
        "employee_id": employee.get("id"),
    }


def find_document_issues(documents: List[StoredDocument]) -> List[DocumentIssue]:
    """
    Find uploaded NR/ASO documents without signature info or expiration date.

    A document can yield both issues.
    """
    issues: List[DocumentIssue] = []

    for doc in documents:
        if not is_uploaded(doc) or is_terminated(doc):
            continue

        doc_type = _document_type(doc)
        if not requires_validity(doc_type.get("code"), doc_type.get("name")):
            continue

        if not has_signature_info(doc.get("observations")):
            issues.append(_make_issue(doc, ISSUE_MISSING_SIGNATURE))

        if parse_date(doc.get("expiration_date")) is None:
            issues.append(_make_issue(doc, ISSUE_MISSING_DATE))

    return issues


def find_expiring_documents(
    documents: List[StoredDocument],
    today: Optional[date] = None,
    window_days: int = DEFAULT_EXPIRING_WINDOW_DAYS,
) -> List[ExpiringDocument]:
    """
    Documents expiring between today and today + window_days (inclusive).

    Sorted by days remaining, soonest first.
    """
    today = today or date.today()
    expiring: List[ExpiringDocument] = []

    for doc in documents:
        if is_terminated(doc) or doc.get("status") == EXPIRED_DOCUMENT_STATUS:
            continue

        expiration = parse_date(doc.get("expiration_date"))
        if expiration is None:
            continue

        remaining = days_until(expiration, today)
        if 0 <= remaining <= window_days:
            expiring.append({
                "id": doc.get("id"),
                "employee_name": _employee(doc).get("full_name") or UNKNOWN_EMPLOYEE_NAME,
                "document_type": _document_type(doc).get("name") or UNKNOWN_DOCUMENT_NAME,
                "expiration_date": format_date(expiration),
                "days_until": remaining,
            })

    expiring.sort(key=lambda d: d["days_until"])
    return expiring


def group_by_urgency(expiring: List[ExpiringDocument]) -> Dict[str, List[ExpiringDocument]]:
    """Split expiring documents into urgent (≤3 days), warning (≤7) and notice."""
    groups: Dict[str, List[ExpiringDocument]] = {"urgent": [], "warning": [], "notice": []}
    for doc in expiring:
        if doc["days_until"] <= URGENT_DAYS:
            groups["urgent"].append(doc)
        elif doc["days_until"] <= WARNING_DAYS:
            groups["warning"].append(doc)
        else:
            groups["notice"].append(doc)
    return groups


# ============================================================================
# Message Composition
# ============================================================================

def format_br_date(value: Any) -> str:
    """dd/mm/yyyy, as shown to Brazilian users."""
    parsed = parse_date(value)
    return parsed.strftime("%d/%m/%Y") if parsed else ""


def _issue_section(title: str, issues: List[DocumentIssue]) -> str:
    lines = [f"{title} ({len(issues)}):*"]
    for issue in issues[:ALERT_ISSUE_LIMIT]:
        lines.append(f"• {issue['employee_name']} - {issue['document_type']}")
    if len(issues) > ALERT_ISSUE_LIMIT:
        lines.append(f"  ...e mais {len(issues) - ALERT_ISSUE_LIMIT}")
    return "\n".join(lines) + "\n\n"


def build_alert_message(
    expiring: List[ExpiringDocument],
    issues: List[DocumentIssue],
    today: Optional[date] = None,
) -> Optional[str]:
    """
    Compose the administrator alert.

    Returns:
        The alert text, or None when there is nothing to report
    """
    if not expiring and not issues:
        return None

    today = today or date.today()
    groups = group_by_urgency(expiring)

    message = f"🔔 *ALERTA DE DOCUMENTOS*\n📅 Data: {format_br_date(today)}\n\n"

    if groups["urgent"]:
        message += "🚨 *URGENTE (até 3 dias):*\n"
        for doc in groups["urgent"]:
            message += f"• {doc['employee_name']} - {doc['document_type']}\n"
            message += f"  📅 Vence: {format_br_date(doc['expiration_date'])}\n"
        message += "\n"

    if groups["warning"]:
        message += "⚠️ *ATENÇÃO (até 7 dias):*\n"
        for doc in groups["warning"]:
            message += f"• {doc['employee_name']} - {doc['document_type']}\n"
            message += f"  📅 Vence em {doc['days_until']} dias\n"
        message += "\n"

    if groups["notice"]:
        message += f"ℹ️ *Outros ({len(groups['notice'])} documentos)*\n\n"

    signature_issues = [i for i in issues if i["issue_type"] == ISSUE_MISSING_SIGNATURE]
    date_issues = [i for i in issues if i["issue_type"] == ISSUE_MISSING_DATE]
    if signature_issues:
        message += _issue_section("✍️ *SEM ASSINATURA", signature_issues)
    if date_issues:
        message += _issue_section("📅 *SEM DATA DE VALIDADE", date_issues)

    message += "\n_Acesse o sistema para mais detalhes._"
    return message


def issue_notification_message(issue: DocumentIssue) -> str:
    """In-app notification text for one document issue."""
    template = ISSUE_MESSAGES.get(issue.get("issue_type"))
    if template is None:
        return f"Problema no documento de {issue.get('employee_name')}"
    return template.format(
        document_type=issue.get("document_type"),
        employee_name=issue.get("employee_name"),
    )


# ============================================================================
# Audit Report
# ============================================================================

@dataclass
class AuditConfig:
    """Configuration for the compliance audit."""

    expiring_window_days: int = DEFAULT_EXPIRING_WINDOW_DAYS

    # Expiring documents at or below this many days go into the alert
    alert_days: int = WARNING_DAYS


@dataclass
class AuditReport:
    """Result of one audit run."""

    audit_date: date
    expiring_documents: List[ExpiringDocument] = field(default_factory=list)
    document_issues: List[DocumentIssue] = field(default_factory=list)
    alert_documents: List[ExpiringDocument] = field(default_factory=list)
    alert_message: Optional[str] = None
    notifications: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def should_alert(self) -> bool:
        return self.alert_message is not None

    def count_issues(self, issue_type: str) -> int:
        return sum(1 for i in self.document_issues if i["issue_type"] == issue_type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audit_date": format_date(self.audit_date),
            "stats": {
                "total_expiring": len(self.expiring_documents),
                "urgent": len(self.alert_documents),
                "issues": {
                    "total": len(self.document_issues),
                    "missing_signatures": self.count_issues(ISSUE_MISSING_SIGNATURE),
                    "missing_dates": self.count_issues(ISSUE_MISSING_DATE),
                },
            },
            "expiring_documents": list(self.expiring_documents),
            "document_issues": list(self.document_issues),
            "alert_message": self.alert_message,
            "notifications": list(self.notifications),
        }


def audit_documents(
    documents: List[StoredDocument],
    today: Optional[date] = None,
    config: Optional[AuditConfig] = None,
) -> AuditReport:
    """
    Run the full compliance audit over stored documents.

    Args:
        documents: Stored documents joined with type and employee
        today: Audit reference date (defaults to today)
        config: Audit configuration

    Returns:
        AuditReport with issues, expiring documents, alert and notifications
    """
    config = config or AuditConfig()
    today = today or date.today()

    issues = find_document_issues(documents)
    expiring = find_expiring_documents(documents, today, config.expiring_window_days)
    alert_documents = [d for d in expiring if d["days_until"] <= config.alert_days]

    alert_message = None
    if alert_documents or issues:
        alert_message = build_alert_message(alert_documents, issues, today)

    notifications = [
        {
            "type": "warning",
            "message": issue_notification_message(issue),
            "document_id": issue["id"],
            "employee_id": issue["employee_id"],
            "company_id": issue["company_id"],
        }
        for issue in issues
    ]

    return AuditReport(
        audit_date=today,
        expiring_documents=expiring,
        document_issues=issues,
        alert_documents=alert_documents,
        alert_message=alert_message,
        notifications=notifications,
    )


# ============================================================================
# Main Node Function
# ============================================================================

def compliance_auditor_node(state: ScanBatchState) -> dict:
    """
    Node C: Compliance Auditor

    Audits the stored documents supplied with the batch.

    Returns:
        dict with document_issues, expiring_documents and audit_report
    """
    print("--- NODE: Auditor ---")

    config = AuditConfig(
        expiring_window_days=int(os.getenv("AUDIT_EXPIRING_WINDOW_DAYS", DEFAULT_EXPIRING_WINDOW_DAYS)),
        alert_days=int(os.getenv("AUDIT_ALERT_DAYS", WARNING_DAYS)),
    )

    documents = state.get("stored_documents", [])
    if not documents:
        print("   No stored documents to audit")
        return {"document_issues": [], "expiring_documents": []}

    report = audit_documents(documents, config=config)
    stats = report.to_dict()["stats"]

    print(f"   Audited {len(documents)} document(s) on {datetime.now().strftime('%Y-%m-%d %H:%M')}")
    print(f"   Expiring in {config.expiring_window_days} days: {stats['total_expiring']} ({stats['urgent']} urgent)")
    print(f"   Issues: {stats['issues']['missing_signatures']} missing signature, "
          f"{stats['issues']['missing_dates']} missing date")
    if report.should_alert:
        logger.info("Administrator alert composed")

    return {
        "document_issues": report.document_issues,
        "expiring_documents": report.expiring_documents,
        "audit_report": report.to_dict(),
    }
