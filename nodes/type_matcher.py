"""
Type Matcher - Resolve AI-guessed document types against the catalog

The vision model returns a free-form guess for the document type: a code
("NR35", "nr-35", "ASO"), a display name ("Certificado NR-35 Trabalho em
Altura"), or both. This module maps that guess onto an entry of the tenant's
document type catalog.

Matching cascade (first strategy that yields an entry wins):
1. Exact code match after normalization (upper-case, alphanumerics only)
2. Regulatory number match (NR35 / NR-35 / NR 35 / NR05 == NR5)
3. Alias keywords for identity and health documents (ASO, CNH, CTPS, RG, CPF)
4. Bidirectional name containment

No strategy raises. An unmatched guess returns None and the caller decides
whether to auto-create a catalog entry (see `should_auto_create`).
"""

import re
import logging
import unicodedata
from typing import List, Dict, Optional, Tuple, Iterable
from dataclasses import dataclass
from enum import Enum

from state import DocumentTypeEntry

# Configure logger
logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

# Codes the model uses when it cannot classify a document
UNKNOWN_TYPE_SENTINELS = frozenset({
    "OUTRO",
    "OUTROS",
    "OTHER",
    "UNKNOWN",
    "DESCONHECIDO",
    "NA",
})

# Canonical code -> lowercase keywords that identify it
TYPE_ALIASES: Dict[str, List[str]] = {
    "ASO": ["aso", "atestado", "saúde ocupacional"],
    "CNH": ["cnh", "habilitação", "carteira de motorista"],
    "CTPS": ["ctps", "carteira de trabalho"],
    "RG": ["rg", "identidade", "registro geral"],
    "CPF": ["cpf", "cadastro pessoa"],
}

# Full NR code, e.g. "NR35" after normalization
NR_CODE_PATTERN = re.compile(r"^NR(\d+)$")

# NR token inside free text, tolerant of separators: NR35, NR-35, NR 35, NR_35
NR_TOKEN_PATTERN = re.compile(r"NR[\s\-_.]*(\d+)(?!\d)", re.IGNORECASE)


class MatchStrategy(Enum):
    """Which cascade step produced a match."""
    EXACT_CODE = "exact_code"
    NR_NUMBER = "nr_number"
    ALIAS = "alias"
    NAME_CONTAINMENT = "name_containment"


@dataclass
class TypeMatch:
    """A catalog entry together with the strategy that found it."""

    entry: DocumentTypeEntry
    strategy: MatchStrategy

    @property
    def type_id(self) -> Optional[str]:
        return self.entry.get("id")

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "type_id": self.entry.get("id"),
            "code": self.entry.get("code"),
            "name": self.entry.get("name"),
            "strategy": self.strategy.value,
        }


# ============================================================================
# Normalization Helpers
# ============================================================================

def normalize_code(value: Optional[str]) -> str:
    """
    Normalize a type code for comparison.

    Upper-cases and strips every non-alphanumeric character, so
    "nr-35", "NR 35" and "NR35" all become "NR35".
    """
    if not value:
        return ""
    return re.sub(r"[^A-Z0-9]", "", fold_accents(str(value)).upper())


def fold_accents(text: str) -> str:
    """Remove diacritics ("saúde" -> "saude")."""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def normalize_name(value: Optional[str]) -> str:
    """
    Normalize a free-text name: lowercase, accent-free, single-spaced.
    """
    if not value:
        return ""
    folded = fold_accents(str(value)).casefold()
    return " ".join(folded.split())


def extract_nr_numbers(text: Optional[str]) -> List[int]:
    """
    Find every regulatory standard number mentioned in text.

    Leading zeros are insignificant: "NR-05" and "NR5" both yield 5.
    A longer number never matches a shorter one ("NR35" does not yield 3).
    """
    if not text:
        return []
    return [int(num) for num in NR_TOKEN_PATTERN.findall(fold_accents(str(text)))]


def is_unknown_sentinel(code: Optional[str]) -> bool:
    """Check if the code is one of the model's "could not classify" values."""
    return normalize_code(code) in UNKNOWN_TYPE_SENTINELS


def should_auto_create(code: Optional[str]) -> bool:
    """
    Check if an unmatched guess may be turned into a new catalog entry.

    Only real codes qualify: the code must be present and must not be
    an explicit "unknown/other" sentinel.
    """
    if not code or not normalize_code(code):
        return False
    return not is_unknown_sentinel(code)


# ============================================================================
# Cascade Strategies
# ============================================================================

def _match_exact_code(
    code: str,
    catalog: List[DocumentTypeEntry],
) -> Optional[DocumentTypeEntry]:
    if not code:
        return None
    for entry in catalog:
        if normalize_code(entry.get("code")) == code:
            return entry
    return None


def _match_nr_number(
    code: str,
    catalog: List[DocumentTypeEntry],
) -> Optional[DocumentTypeEntry]:
    nr_match = NR_CODE_PATTERN.match(code)
    if not nr_match:
        return None

    wanted = int(nr_match.group(1))
    for entry in catalog:
        if wanted in extract_nr_numbers(entry.get("code")):
            return entry
        if wanted in extract_nr_numbers(entry.get("name")):
            return entry
    return None


def _alias_hits(haystacks: Iterable[str]) -> List[str]:
    """Canonical codes whose alias keywords appear in any haystack."""
    hits: List[str] = []
    texts = [h for h in haystacks if h]
    for canonical, keywords in TYPE_ALIASES.items():
        folded_keywords = [normalize_name(k) for k in keywords]
        if any(k in text for k in folded_keywords for text in texts):
            hits.append(canonical)
    return hits


def _match_alias(
    raw_code: Optional[str],
    raw_name: Optional[str],
    catalog: List[DocumentTypeEntry],
) -> Optional[DocumentTypeEntry]:
    haystacks = [normalize_name(raw_name), normalize_name(raw_code)]
    for canonical in _alias_hits(haystacks):
        entry = _match_exact_code(canonical, catalog)
        if entry:
            return entry
    return None


def _match_name_containment(
    raw_name: Optional[str],
    catalog: List[DocumentTypeEntry],
) -> Optional[DocumentTypeEntry]:
    name = normalize_name(raw_name)
    if not name:
        # An empty name is contained in every entry name
        return None
    for entry in catalog:
        entry_name = normalize_name(entry.get("name"))
        if not entry_name:
            continue
        if name in entry_name or entry_name in name:
            return entry
    return None


# ============================================================================
# Main Matching Functions
# ============================================================================

def match_type_with_strategy(
    raw_code: Optional[str],
    raw_name: Optional[str],
    catalog: List[DocumentTypeEntry],
) -> Optional[TypeMatch]:
    """
    Run the matching cascade and report which strategy succeeded.

    Args:
        raw_code: Type code guessed by the model (may be None)
        raw_name: Type name guessed by the model (may be None)
        catalog: Catalog snapshot, searched in order

    Returns:
        TypeMatch or None if no strategy matched
    """
    code = normalize_code(raw_code)

    entry = _match_exact_code(code, catalog)
    if entry:
        return TypeMatch(entry=entry, strategy=MatchStrategy.EXACT_CODE)

    entry = _match_nr_number(code, catalog)
    if entry:
        return TypeMatch(entry=entry, strategy=MatchStrategy.NR_NUMBER)

    entry = _match_alias(raw_code, raw_name, catalog)
    if entry:
        return TypeMatch(entry=entry, strategy=MatchStrategy.ALIAS)

    entry = _match_name_containment(raw_name, catalog)
    if entry:
        return TypeMatch(entry=entry, strategy=MatchStrategy.NAME_CONTAINMENT)

    logger.debug(f"No catalog match for code={raw_code!r} name={raw_name!r}")
    return None


def match_type(
    raw_code: Optional[str],
    raw_name: Optional[str],
    catalog: List[DocumentTypeEntry],
) -> Optional[DocumentTypeEntry]:
    """
    Resolve a raw type guess to a catalog entry.

    Returns:
        The matched DocumentTypeEntry, or None when unmatched
    """
    result = match_type_with_strategy(raw_code, raw_name, catalog)
    return result.entry if result else None


def split_type_guess(guess: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a single free-text guess into (code, name).

    Single-scan flows return one `document_type` string that may be either
    a code ("NR35") or a name ("Atestado de Saúde Ocupacional"). Short
    tokens without spaces are treated as codes.
    """
    if not guess or not guess.strip():
        return None, None
    text = guess.strip()
    if " " not in text and len(text) <= 16:
        return text, None
    return None, text
