"""
Tests for the compliance auditor (nightly document audit).

Rules under test:
- Issues only for uploaded NR/ASO documents of active employees
- Expiring window of 30 days, excluding expired and terminated
- Urgency buckets and alert message composition
"""

import os
import pytest
from datetime import date
from unittest.mock import patch

from nodes.auditor import (
    ISSUE_MISSING_SIGNATURE,
    ISSUE_MISSING_DATE,
    ISSUE_INCOMPLETE,
    AuditConfig,
    AuditReport,
    requires_validity,
    days_until,
    document_status,
    find_document_issues,
    find_expiring_documents,
    group_by_urgency,
    format_br_date,
    build_alert_message,
    issue_notification_message,
    audit_documents,
    compliance_auditor_node,
)


TODAY = date(2025, 6, 1)

SIGNED = "Assinaturas: 3/3 (Empresa ✓, Instrutor ✓, Funcionário ✓) - Completamente assinado"


def stored(doc_id, code="NR35", name="NR-35 - Trabalho em Altura", expiration="2026-01-01",
           observations=SIGNED, file_path="docs/a.pdf", status="approved",
           employee_name="Maria Souza", employee_status="ATIVO"):
    return {
        "id": doc_id,
        "expiration_date": expiration,
        "observations": observations,
        "status": status,
        "file_path": file_path,
        "document_type": {"code": code, "name": name},
        "employee": {"id": f"emp-{doc_id}", "full_name": employee_name,
                     "company_id": "co-1", "status": employee_status},
    }


# ============================================================================
# Helper Tests
# ============================================================================

class TestRequiresValidity:
    """Tests for requires_validity."""

    @pytest.mark.parametrize("code, name", [
        ("NR35", None),
        ("nr10", "Elétrica"),
        ("ASO", None),
        (None, "Certificado NR 33"),
        ("", "ATESTADO DE SAÚDE OCUPACIONAL"),
    ])
    def test_required(self, code, name):
        assert requires_validity(code, name) is True

    @pytest.mark.parametrize("code, name", [
        ("RG", "Registro Geral"),
        ("CPF", "Cadastro de Pessoa Física"),
        (None, None),
        ("", ""),
    ])
    def test_not_required(self, code, name):
        assert requires_validity(code, name) is False


class TestDocumentStatus:
    """Tests for the dashboard status."""

    def test_days_until(self):
        assert days_until(date(2025, 6, 4), TODAY) == 3
        assert days_until(date(2025, 5, 31), TODAY) == -1

    @pytest.mark.parametrize("expiration, expected", [
        (None, "no_expiration"),
        ("", "no_expiration"),
        ("2025-05-31", "expired"),
        ("2025-06-01", "expiring"),
        ("2025-07-01", "expiring"),
        ("2025-07-02", "valid"),
    ])
    def test_document_status(self, expiration, expected):
        assert document_status(expiration, TODAY) == expected

    def test_custom_window(self):
        assert document_status("2025-06-20", TODAY, window_days=15) == "valid"

    def test_format_br_date(self):
        assert format_br_date("2025-06-04") == "04/06/2025"
        assert format_br_date(None) == ""


# ============================================================================
# Issue Detection Tests
# ============================================================================

class TestFindDocumentIssues:
    """Tests for find_document_issues."""

    def test_clean_document(self):
        assert find_document_issues([stored("d1")]) == []

    def test_missing_signature(self):
        issues = find_document_issues([stored("d1", observations="Documento legível")])
        assert issues == [{
            "id": "d1",
            "employee_name": "Maria Souza",
            "document_type": "NR-35 - Trabalho em Altura",
            "issue_type": ISSUE_MISSING_SIGNATURE,
            "company_id": "co-1",
            "employee_id": "emp-d1",
        }]

    def test_missing_date(self):
        issues = find_document_issues([stored("d1", expiration=None)])
        assert [i["issue_type"] for i in issues] == [ISSUE_MISSING_DATE]

    def test_both_issues(self):
        issues = find_document_issues([stored("d1", expiration=None, observations=None)])
        assert [i["issue_type"] for i in issues] == [ISSUE_MISSING_SIGNATURE, ISSUE_MISSING_DATE]

    def test_documents_without_validity_are_skipped(self):
        doc = stored("d1", code="RG", name="Registro Geral", expiration=None, observations=None)
        assert find_document_issues([doc]) == []

    def test_terminated_employees_are_skipped(self):
        doc = stored("d1", expiration=None, employee_status="DEMITIDO")
        assert find_document_issues([doc]) == []

    @pytest.mark.parametrize("file_path", [None, "", "  "])
    def test_documents_without_file_are_skipped(self, file_path):
        assert find_document_issues([stored("d1", expiration=None, file_path=file_path)]) == []

    def test_missing_joins_use_placeholders(self):
        doc = {"id": "d1", "file_path": "a.pdf", "document_type": {"code": "ASO"}}
        issues = find_document_issues([doc])
        assert issues[0]["employee_name"] == "Desconhecido"
        assert issues[0]["document_type"] == "Documento"


# ============================================================================
# Expiring Documents Tests
# ============================================================================

class TestFindExpiringDocuments:
    """Tests for find_expiring_documents."""

    def test_window_boundaries(self):
        docs = [
            stored("past", expiration="2025-05-31"),
            stored("today", expiration="2025-06-01"),
            stored("edge", expiration="2025-07-01"),
            stored("beyond", expiration="2025-07-02"),
            stored("none", expiration=None),
        ]
        expiring = find_expiring_documents(docs, TODAY)
        assert [d["id"] for d in expiring] == ["today", "edge"]
        assert expiring[0]["days_until"] == 0
        assert expiring[1]["days_until"] == 30

    def test_sorted_soonest_first(self):
        docs = [stored("late", expiration="2025-06-20"), stored("soon", expiration="2025-06-02")]
        assert [d["id"] for d in find_expiring_documents(docs, TODAY)] == ["soon", "late"]

    def test_expired_status_and_terminated_excluded(self):
        docs = [
            stored("a", expiration="2025-06-05", status="expired"),
            stored("b", expiration="2025-06-05", employee_status="demitido"),
            stored("c", expiration="2025-06-05", file_path=None),
        ]
        assert [d["id"] for d in find_expiring_documents(docs, TODAY)] == ["c"]

    def test_custom_window(self):
        docs = [stored("a", expiration="2025-06-10")]
        assert find_expiring_documents(docs, TODAY, window_days=7) == []


class TestGroupByUrgency:
    """Tests for urgency buckets."""

    def test_buckets(self):
        expiring = [{"days_until": d} for d in (0, 3, 4, 7, 8, 30)]
        groups = group_by_urgency(expiring)
        assert [d["days_until"] for d in groups["urgent"]] == [0, 3]
        assert [d["days_until"] for d in groups["warning"]] == [4, 7]
        assert [d["days_until"] for d in groups["notice"]] == [8, 30]


# ============================================================================
# Message Tests
# ============================================================================

class TestMessages:
    """Tests for alert and notification text."""

    def test_nothing_to_report(self):
        assert build_alert_message([], [], TODAY) is None

    def test_alert_sections(self):
        expiring = [
            {"id": "a", "employee_name": "Ana", "document_type": "NR-35", "expiration_date": "2025-06-03", "days_until": 2},
            {"id": "b", "employee_name": "Bruno", "document_type": "ASO", "expiration_date": "2025-06-06", "days_until": 5},
            {"id": "c", "employee_name": "Caio", "document_type": "NR-10", "expiration_date": "2025-06-21", "days_until": 20},
        ]
        issues = [
            {"id": "d", "employee_name": "Davi", "document_type": "NR-33",
             "issue_type": ISSUE_MISSING_SIGNATURE, "company_id": None, "employee_id": None},
        ]
        message = build_alert_message(expiring, issues, TODAY)

        assert message.startswith("🔔 *ALERTA DE DOCUMENTOS*\n📅 Data: 01/06/2025\n\n")
        assert "🚨 *URGENTE (até 3 dias):*\n• Ana - NR-35\n  📅 Vence: 03/06/2025\n" in message
        assert "⚠️ *ATENÇÃO (até 7 dias):*\n• Bruno - ASO\n  📅 Vence em 5 dias\n" in message
        assert "ℹ️ *Outros (1 documentos)*" in message
        assert "✍️ *SEM ASSINATURA (1):*\n• Davi - NR-33\n" in message
        assert "SEM DATA DE VALIDADE" not in message
        assert message.endswith("_Acesse o sistema para mais detalhes._")

    def test_issue_list_is_truncated(self):
        issues = [
            {"id": str(i), "employee_name": f"Pessoa {i}", "document_type": "ASO",
             "issue_type": ISSUE_MISSING_DATE, "company_id": None, "employee_id": None}
            for i in range(7)
        ]
        message = build_alert_message([], issues, TODAY)
        assert "📅 *SEM DATA DE VALIDADE (7):*" in message
        assert "Pessoa 4" in message
        assert "Pessoa 5" not in message
        assert "  ...e mais 2" in message

    @pytest.mark.parametrize("issue_type, expected", [
        (ISSUE_MISSING_SIGNATURE, '✍️ Documento "ASO" de Ana está SEM ASSINATURA verificada'),
        (ISSUE_MISSING_DATE, '📅 Documento "ASO" de Ana está SEM DATA DE VALIDADE'),
        (ISSUE_INCOMPLETE, '⚠️ Documento "ASO" de Ana está INCOMPLETO'),
        ("other", "Problema no documento de Ana"),
    ])
    def test_issue_notification_message(self, issue_type, expected):
        issue = {"id": "x", "employee_name": "Ana", "document_type": "ASO", "issue_type": issue_type}
        assert issue_notification_message(issue) == expected


# ============================================================================
# Audit Report Tests
# ============================================================================

class TestAuditDocuments:
    """Tests for the full audit."""

    def test_report(self):
        docs = [
            stored("urgent", expiration="2025-06-02"),
            stored("later", expiration="2025-06-25"),
            stored("unsigned", expiration="2026-01-01", observations=""),
            stored("rg", code="RG", name="Registro Geral", expiration=None, observations=None),
        ]
        report = audit_documents(docs, today=TODAY)

        assert isinstance(report, AuditReport)
        assert [d["id"] for d in report.expiring_documents] == ["urgent", "later"]
        assert [d["id"] for d in report.alert_documents] == ["urgent"]
        assert report.should_alert is True
        assert "Outros" not in report.alert_message
        assert len(report.notifications) == 1
        assert report.notifications[0]["document_id"] == "unsigned"

        data = report.to_dict()
        assert data["audit_date"] == "2025-06-01"
        assert data["stats"] == {
            "total_expiring": 2,
            "urgent": 1,
            "issues": {"total": 1, "missing_signatures": 1, "missing_dates": 0},
        }

    def test_no_alert_when_clean(self):
        report = audit_documents([stored("ok", expiration="2026-01-01")], today=TODAY)
        assert report.should_alert is False
        assert report.alert_message is None

    def test_config(self):
        docs = [stored("a", expiration="2025-06-25")]
        report = audit_documents(docs, today=TODAY, config=AuditConfig(expiring_window_days=10))
        assert report.expiring_documents == []


class TestComplianceAuditorNode:
    """Tests for the graph node."""

    def test_no_documents(self):
        assert compliance_auditor_node({}) == {"document_issues": [], "expiring_documents": []}

    def test_node_reads_window_from_env(self):
        docs = [stored("a", expiration="2099-01-01", observations="")]
        with patch.dict(os.environ, {"AUDIT_EXPIRING_WINDOW_DAYS": "5"}):
            result = compliance_auditor_node({"stored_documents": docs})

        assert result["expiring_documents"] == []
        assert [i["issue_type"] for i in result["document_issues"]] == [ISSUE_MISSING_SIGNATURE]
        assert result["audit_report"]["stats"]["issues"]["total"] == 1
