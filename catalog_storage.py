"""
Document type catalog storage using a JSON file.

Holds the catalog snapshot the resolver matches against: one entry per
document type with its code, display name and default validity in years.
Entries with no `company_id` are global; company entries are visible only
to that company. Shared by main.py, server.py and the resolver's
auto-create hook.
"""
import os
import json
import uuid
import logging
from datetime import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from state import DocumentTypeEntry

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_PATH = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), "storage", "document_types.json"
)

AUTO_CREATED_DESCRIPTION = "Tipo criado automaticamente pelo scanner"


# ============================================================================
# Errors
# ============================================================================

class CatalogError(Exception):
    """Base error for catalog operations."""


class DocumentTypeNotFoundError(CatalogError, KeyError):
    """No catalog entry with the given id."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Document type not found"


class DuplicateDocumentTypeError(CatalogError, ValueError):
    """An entry with the same code already exists in the same scope."""


# ============================================================================
# Default Catalog
# ============================================================================

# (code, name, default_validity_years)
DEFAULT_DOCUMENT_TYPES: List[tuple] = [
    ("NR05", "NR-05 - CIPA", 1),
    ("NR06", "NR-06 - Equipamento de Proteção Individual", 1),
    ("NR10", "NR-10 - Segurança em Instalações Elétricas", 2),
    ("NR11", "NR-11 - Operação de Empilhadeira", 1),
    ("NR12", "NR-12 - Segurança em Máquinas e Equipamentos", 2),
    ("NR13", "NR-13 - Caldeiras e Vasos de Pressão", 2),
    ("NR17", "NR-17 - Ergonomia", 2),
    ("NR18", "NR-18 - Construção Civil", 2),
    ("NR20", "NR-20 - Inflamáveis e Combustíveis", 2),
    ("NR23", "NR-23 - Proteção Contra Incêndios", 1),
    ("NR26", "NR-26 - Sinalização de Segurança", 2),
    ("NR33", "NR-33 - Espaços Confinados", 1),
    ("NR34", "NR-34 - Indústria Naval", 1),
    ("NR35", "NR-35 - Trabalho em Altura", 2),
    ("ASO", "ASO - Atestado de Saúde Ocupacional", 1),
    ("CNH", "Carteira Nacional de Habilitação", 5),
    ("RG", "Registro Geral (Identidade)", None),
    ("CPF", "Cadastro de Pessoa Física", None),
    ("CTPS", "Carteira de Trabalho e Previdência Social", None),
    ("FICHA_EPI", "Ficha de Entrega de EPI", None),
    ("ORDEM_SERVICO", "Ordem de Serviço", None),
    ("CONTRATO", "Contrato de Trabalho", None),
    ("FICHA_REGISTRO", "Ficha de Registro", None),
    ("COMP_RESID", "Comprovante de Residência", None),
    ("OUTRO", "Outro", None),
]


# ============================================================================
# Catalog Entry
# ============================================================================

@dataclass
class DocumentType:
    """One document type in the catalog."""

    id: str
    code: str
    name: str
    default_validity_years: Optional[int] = None
    description: str = ""
    is_active: bool = True
    company_id: Optional[str] = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    updated_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Catalog entry as consumed by the resolver."""
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "default_validity_years": self.default_validity_years,
            "description": self.description,
            "is_active": self.is_active,
            "company_id": self.company_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentType":
        return cls(
            id=data["id"],
            code=normalize_type_code(data["code"]),
            name=data.get("name") or data["code"],
            default_validity_years=data.get("default_validity_years"),
            description=data.get("description") or "",
            is_active=data.get("is_active", True),
            company_id=data.get("company_id"),
            created_at=data.get("created_at", datetime.now().isoformat()),
            updated_at=data.get("updated_at", datetime.now().isoformat()),
        )


def normalize_type_code(code: str) -> str:
    """Stored codes are upper-case and trimmed."""
    return (code or "").strip().upper()


# ============================================================================
# Catalog
# ============================================================================

class DocumentTypeCatalog:
    """
    Catalog of document types with JSON persistence.

    Codes are unique per scope: one global entry per code, and one entry
    per code for each company.
    """

    UPDATABLE_FIELDS = {
        "code", "name", "default_validity_years", "description", "is_active",
    }

    def __init__(self, storage_path: Optional[str] = None):
        """
        Initialize the catalog.

        Args:
            storage_path: Optional path to JSON file for persistence
        """
        self._types: Dict[str, DocumentType] = {}
        self._storage_path = storage_path

        if storage_path and os.path.exists(storage_path):
            self.load()

    def find_by_code(self, code: str, company_id: Optional[str]) -> Optional[DocumentType]:
        for doc_type in self._types.values():
            if doc_type.code == code and doc_type.company_id == company_id:
                return doc_type
        return None

    def add(
        self,
        code: str,
        name: Optional[str] = None,
        default_validity_years: Optional[int] = None,
        description: str = "",
        company_id: Optional[str] = None,
        is_active: bool = True,
    ) -> DocumentType:
        """
        Add a new document type.

        Raises:
            ValueError: If the code is empty
            DuplicateDocumentTypeError: If the code already exists in the scope
        """
        code = normalize_type_code(code)
        if not code:
            raise ValueError("Document type code is required")
        if default_validity_years is not None and default_validity_years <= 0:
            raise ValueError("default_validity_years must be positive or null")

        if self.find_by_code(code, company_id):
            scope = f"company {company_id}" if company_id else "global catalog"
            raise DuplicateDocumentTypeError(
                f"Document type '{code}' already exists in {scope}"
            )

        doc_type = DocumentType(
            id=str(uuid.uuid4()),
            code=code,
            name=(name or code).strip(),
            default_validity_years=default_validity_years,
            description=description,
            is_active=is_active,
            company_id=company_id,
        )
        self._types[doc_type.id] = doc_type
        self._save_if_configured()

        logger.info(f"Added document type: {doc_type.code} ({doc_type.id})")
        return doc_type

    def update(self, type_id: str, updates: Dict[str, Any]) -> DocumentType:
        """
        Update an existing document type.

        Raises:
            DocumentTypeNotFoundError: If the type doesn't exist
            DuplicateDocumentTypeError: If the new code clashes in the scope
        """
        existing = self.get(type_id)
        if existing is None:
            raise DocumentTypeNotFoundError(f"Document type '{type_id}' not found")

        # Validate everything before touching the entry
        changes = {k: v for k, v in updates.items() if k in self.UPDATABLE_FIELDS}
        if "code" in changes:
            code = normalize_type_code(changes["code"])
            if not code:
                raise ValueError("Document type code is required")
            clash = self.find_by_code(code, existing.company_id)
            if clash and clash.id != type_id:
                raise DuplicateDocumentTypeError(
                    f"Document type '{code}' already exists"
                )
            changes["code"] = code
        validity_years = changes.get("default_validity_years")
        if validity_years is not None and validity_years <= 0:
            raise ValueError("default_validity_years must be positive or null")

        for field_name, value in changes.items():
            setattr(existing, field_name, value)

        existing.updated_at = datetime.now().isoformat()
        self._save_if_configured()

        logger.info(f"Updated document type: {existing.code} ({type_id})")
        return existing

    def delete(self, type_id: str) -> bool:
        """Delete a document type. Returns False if not found."""
        if type_id not in self._types:
            return False

        deleted = self._types.pop(type_id)
        self._save_if_configured()

        logger.info(f"Deleted document type: {deleted.code} ({type_id})")
        return True

    def get(self, type_id: str) -> Optional[DocumentType]:
        return self._types.get(type_id)

    def list(
        self,
        company_id: Optional[str] = None,
        active_only: bool = False,
    ) -> List[DocumentType]:
        """
        List document types visible to a company.

        Global entries come first, then the company's own, each sorted by code.
        """
        types = [
            t for t in self._types.values()
            if t.company_id is None or (company_id and t.company_id == company_id)
        ]
        if active_only:
            types = [t for t in types if t.is_active]

        types.sort(key=lambda t: (t.company_id is not None, t.code))
        return types

    def snapshot(self, company_id: Optional[str] = None) -> List[DocumentTypeEntry]:
        """Active entries as plain dicts, ready for the resolver."""
        return [t.to_dict() for t in self.list(company_id=company_id, active_only=True)]

    def seed_defaults(self, company_id: Optional[str] = None) -> List[DocumentType]:
        """
        Add the default document types missing from the scope.

        Returns:
            The newly created types (existing codes are left untouched)
        """
        created = []
        for code, name, validity_years in DEFAULT_DOCUMENT_TYPES:
            if self.find_by_code(code, company_id):
                continue
            doc_type = DocumentType(
                id=str(uuid.uuid4()),
                code=code,
                name=name,
                default_validity_years=validity_years,
                company_id=company_id,
            )
            self._types[doc_type.id] = doc_type
            created.append(doc_type)

        if created:
            self._save_if_configured()
        print(f"   🌱 Seeded {len(created)} document type(s)")
        return created

    def save(self, path: Optional[str] = None) -> None:
        """Save catalog to JSON file."""
        save_path = path or self._storage_path
        if not save_path:
            raise ValueError("No storage path configured")

        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data = {
            "version": "1.0",
            "document_types": [t.to_dict() for t in self._types.values()],
            "saved_at": datetime.now().isoformat(),
        }

        with open(save_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        logger.info(f"Saved {len(self._types)} document types to {save_path}")

    def load(self, path: Optional[str] = None) -> int:
        """Load catalog from JSON file. Returns the number of types loaded."""
        load_path = path or self._storage_path
        if not load_path:
            raise ValueError("No storage path configured")

        if not os.path.exists(load_path):
            logger.warning(f"Storage file not found: {load_path}")
            return 0

        with open(load_path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        self._types.clear()
        for type_data in data.get("document_types", []):
            doc_type = DocumentType.from_dict(type_data)
            self._types[doc_type.id] = doc_type

        logger.info(f"Loaded {len(self._types)} document types from {load_path}")
        return len(self._types)

    def _save_if_configured(self) -> None:
        if self._storage_path:
            self.save()

    def __len__(self) -> int:
        return len(self._types)

    def __contains__(self, type_id: str) -> bool:
        return type_id in self._types


# Global catalog instance (can be replaced with custom instance)
_catalog: Optional[DocumentTypeCatalog] = None


def get_catalog() -> DocumentTypeCatalog:
    """Get the global catalog, creating it from CATALOG_STORAGE_PATH if needed."""
    global _catalog
    if _catalog is None:
        storage_path = os.getenv("CATALOG_STORAGE_PATH", DEFAULT_STORAGE_PATH)
        _catalog = DocumentTypeCatalog(storage_path)
    return _catalog


def set_catalog(catalog: Optional[DocumentTypeCatalog]) -> None:
    """Set the global catalog (None resets it)."""
    global _catalog
    _catalog = catalog


def create_auto_detected_type(
    code: str,
    name: Optional[str] = None,
    company_id: Optional[str] = None,
) -> Optional[DocumentTypeEntry]:
    """
    Create a catalog entry for a code the scanner found but the catalog lacks.

    Auto-created types have no default validity. If the code already exists
    in the scope (e.g. created by a concurrent batch) that entry is returned,
    unless it was deactivated, in which case None is returned.
    """
    catalog = get_catalog()
    try:
        doc_type = catalog.add(
            code,
            name=name or code,
            default_validity_years=None,
            description=AUTO_CREATED_DESCRIPTION,
            company_id=company_id,
        )
    except DuplicateDocumentTypeError:
        doc_type = catalog.find_by_code(normalize_type_code(code), company_id)
        if doc_type is None:
            return None
        if not doc_type.is_active:
            logger.info(f"Not reusing inactive document type {doc_type.code} ({doc_type.id})")
            return None
        print(f"   ↺ Reusing existing document type {doc_type.code}")
        return doc_type.to_dict()

    print(f"   ➕ Auto-created document type {doc_type.code}")
    return doc_type.to_dict()
