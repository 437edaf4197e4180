"""
FastAPI Server for the Document Compliance API

Provides endpoints for:
- Managing the document type catalog (list, create, update, delete, seed)
- Parsing raw vision-model replies into scan results
- Resolving a batch of scan results for an employee
- Running the compliance audit over stored documents
"""

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Dict, Any, List, Optional, Union
from datetime import date
from dotenv import load_dotenv

from catalog_storage import (
    DocumentTypeNotFoundError,
    DuplicateDocumentTypeError,
    create_auto_detected_type,
    get_catalog,
)
from nodes.scan_parser import parse_ai_responses
from nodes.resolver import ResolverConfig, resolve_batch
from nodes.auditor import AuditConfig, DEFAULT_EXPIRING_WINDOW_DAYS, WARNING_DAYS, audit_documents

load_dotenv()

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Document Compliance API",
    description="Resolution and audit API for scanned employee documents",
    version="0.1.0",
)

# CORS for React frontend (dev server typically on 5173)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Pydantic Models for API
# ============================================================================

class DocumentTypeCreate(BaseModel):
    """Request to add a document type to the catalog."""
    code: str
    name: Optional[str] = None
    default_validity_years: Optional[int] = None
    description: str = ""
    company_id: Optional[str] = None
    is_active: bool = True


class DocumentTypeUpdate(BaseModel):
    """Fields of a document type that can be changed."""
    code: Optional[str] = None
    name: Optional[str] = None
    default_validity_years: Optional[int] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class SeedRequest(BaseModel):
    """Request to seed the default catalog."""
    company_id: Optional[str] = None


class ScanResponseItem(BaseModel):
    """One raw model reply for a scanned file."""
    fileName: str
    content: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None


class ParseScanRequest(BaseModel):
    """Raw model replies to parse."""
    responses: List[ScanResponseItem]


class ResolveRequest(BaseModel):
    """A batch of raw scan results to resolve."""
    results: List[Any]
    employee_id: Optional[str] = None
    company_id: Optional[str] = None
    # Keyed by employee id, or a plain list for `employee_id`
    existing_documents: Union[Dict[str, List[Dict[str, Any]]], List[Dict[str, Any]]] = {}
    # Catalog snapshot; defaults to the stored catalog
    catalog: Optional[List[Dict[str, Any]]] = None
    auto_create_types: bool = False
    today: Optional[date] = None


class AuditRequest(BaseModel):
    """Stored documents to audit."""
    documents: List[Dict[str, Any]]
    today: Optional[date] = None
    expiring_window_days: int = DEFAULT_EXPIRING_WINDOW_DAYS
    alert_days: int = WARNING_DAYS


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/api/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "doc-compliance-api"}


@app.get("/api/document-types")
def list_document_types(company_id: Optional[str] = None, active_only: bool = False):
    """List document types visible to a company."""
    types = get_catalog().list(company_id=company_id, active_only=active_only)
    return [t.to_dict() for t in types]


@app.post("/api/document-types", status_code=201)
def create_document_type(request: DocumentTypeCreate) -> Dict[str, Any]:
    """Add a document type to the catalog."""
    try:
        doc_type = get_catalog().add(
            request.code,
            name=request.name,
            default_validity_years=request.default_validity_years,
            description=request.description,
            company_id=request.company_id,
            is_active=request.is_active,
        )
    except DuplicateDocumentTypeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return doc_type.to_dict()


@app.get("/api/document-types/{type_id}")
def get_document_type(type_id: str) -> Dict[str, Any]:
    """Get one document type."""
    doc_type = get_catalog().get(type_id)
    if not doc_type:
        raise HTTPException(status_code=404, detail="Document type not found")
    return doc_type.to_dict()


@app.put("/api/document-types/{type_id}")
def update_document_type(type_id: str, request: DocumentTypeUpdate) -> Dict[str, Any]:
    """Update a document type."""
    try:
        doc_type = get_catalog().update(type_id, request.model_dump(exclude_unset=True))
    except DocumentTypeNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DuplicateDocumentTypeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return doc_type.to_dict()


@app.delete("/api/document-types/{type_id}")
def delete_document_type(type_id: str):
    """Delete a document type."""
    if not get_catalog().delete(type_id):
        raise HTTPException(status_code=404, detail="Document type not found")
    return {"message": "Document type deleted", "id": type_id}


@app.post("/api/seed-document-types")
def seed_document_types(request: Optional[SeedRequest] = None):
    """Seed the default NR/ASO/identity catalog."""
    company_id = request.company_id if request else None
    created = get_catalog().seed_defaults(company_id=company_id)
    return {
        "message": f"Seeded {len(created)} document type(s)",
        "created": [t.to_dict() for t in created],
    }


@app.post("/api/parse-scan")
def parse_scan(request: ParseScanRequest):
    """Parse raw model replies into scan results."""
    responses = [item.model_dump() for item in request.responses]
    return {"results": parse_ai_responses(responses)}


@app.post("/api/resolve")
def resolve(request: ResolveRequest):
    """Resolve a batch of scan results for an employee."""
    catalog = request.catalog
    if catalog is None:
        catalog = get_catalog().snapshot(company_id=request.company_id)

    existing = request.existing_documents
    if isinstance(existing, list):
        if existing and not request.employee_id:
            raise HTTPException(
                status_code=400,
                detail="employee_id is required when existing_documents is a list",
            )
        existing = {request.employee_id: existing} if request.employee_id else {}

    on_unmatched = None
    if request.auto_create_types:
        def on_unmatched(code: str, name: Optional[str]):
            return create_auto_detected_type(code, name, company_id=request.company_id)

    batch = resolve_batch(
        request.results,
        catalog,
        existing,
        employee_id=request.employee_id,
        on_unmatched=on_unmatched,
        config=ResolverConfig(auto_create_types=request.auto_create_types),
        today=request.today,
    )
    return batch.to_dict()


@app.post("/api/audit")
def audit(request: AuditRequest):
    """Run the compliance audit over stored documents."""
    if request.expiring_window_days < 0 or request.alert_days < 0:
        raise HTTPException(status_code=400, detail="Day windows must not be negative")

    report = audit_documents(
        request.documents,
        today=request.today,
        config=AuditConfig(
            expiring_window_days=request.expiring_window_days,
            alert_days=request.alert_days,
        ),
    )
    return report.to_dict()


# ============================================================================
# Run with: uvicorn server:app --reload
# ============================================================================
