"""
Scan Parser - Turn raw vision-model responses into RawScanResult dicts

The classification call itself happens elsewhere; this module only deals
with what comes back. Model replies are supposed to be bare JSON but often
arrive wrapped in Markdown fences, with the legacy signature field name,
with "null" strings instead of JSON nulls, or not as JSON at all.

Every failure is expressed as a `success: false` result with a
Portuguese error message for the review screen. Nothing here raises
except `coerce_raw_result`, which guards the orchestrator's input
scaffolding.
"""

import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from state import RawScanResult, ScanBatchState
from nodes.signatures import coerce_bool, format_signature_details
from nodes.type_matcher import split_type_guess

logger = logging.getLogger(__name__)


# ============================================================================
# Error Messages
# ============================================================================

EMPTY_RESPONSE_ERROR = "Resposta vazia da IA"
UNPARSEABLE_RESPONSE_ERROR = "Não foi possível processar a resposta"
UNKNOWN_FAILURE_ERROR = "Erro ao processar arquivo"
RATE_LIMIT_ERROR = "Limite de requisições excedido. Aguarde alguns segundos."
NO_CREDITS_ERROR = "Créditos insuficientes."

# Provider HTTP status -> user-facing error
PROVIDER_STATUS_ERRORS: Dict[int, str] = {
    429: RATE_LIMIT_ERROR,
    402: NO_CREDITS_ERROR,
}

DATE_FIELDS = ("emission_date", "expiration_date")


class MalformedScanResultError(ValueError):
    """A raw scan result lacks the scaffolding needed to resolve it."""

    def __init__(self, message: str, file_name: Optional[str] = None):
        self.file_name = file_name
        super().__init__(message)


# ============================================================================
# Response Cleaning
# ============================================================================

def clean_ai_content(content: str) -> str:
    """
    Strip Markdown code fences around a JSON reply.

    Handles ```json ... ``` as well as bare ``` ... ``` fences.
    """
    text = content.strip()
    if "```json" in text:
        text = text.split("```json", 1)[1]
        text = text.split("```", 1)[0]
    elif "```" in text:
        parts = text.split("```")
        if len(parts) >= 3:
            text = parts[1]
    return text.strip()


def default_signatures() -> Dict[str, Any]:
    """Signature block used when the model omitted one."""
    return {
        "count": 0,
        "has_company_signature": False,
        "has_instructor_signature": False,
        "has_employee_signature": False,
        "is_fully_signed": False,
        "details": format_signature_details({}),
    }


def normalize_scan_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Normalize the fields of a parsed model reply.

    - Missing signature block -> all-false default
    - Legacy `has_responsible_signature` copied to `has_company_signature`
    - Missing `details` tooltip rebuilt from the role booleans
    - "null"-like date strings -> None
    - Single `document_type` guess split into code/name
    """
    result: Dict[str, Any] = dict(payload)

    signatures = result.get("signatures")
    if not isinstance(signatures, Mapping):
        result["signatures"] = default_signatures()
    else:
        signatures = dict(signatures)
        if (
            "has_responsible_signature" in signatures
            and "has_company_signature" not in signatures
        ):
            signatures["has_company_signature"] = signatures["has_responsible_signature"]
        if not signatures.get("details"):
            signatures["details"] = format_signature_details({
                "company": bool(coerce_bool(signatures.get("has_company_signature"))),
                "instructor": bool(coerce_bool(signatures.get("has_instructor_signature"))),
                "employee": bool(coerce_bool(signatures.get("has_employee_signature"))),
            })
        result["signatures"] = signatures

    for key in DATE_FIELDS:
        value = result.get(key)
        if isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
            result[key] = None

    if "document_type" in result and not (
        result.get("document_type_code") or result.get("document_type_name")
    ):
        code, name = split_type_guess(result.get("document_type"))
        result["document_type_code"] = code
        result["document_type_name"] = name

    return result


# ============================================================================
# Result Builders
# ============================================================================

def failure_result(file_name: str, error: str) -> RawScanResult:
    """Build a failed RawScanResult."""
    return {"fileName": file_name, "success": False, "error": error}


def provider_error_result(file_name: str, status_code: int) -> RawScanResult:
    """Failed result for a provider HTTP error (rate limit, credits, ...)."""
    error = PROVIDER_STATUS_ERRORS.get(status_code, f"Erro na API: {status_code}")
    return failure_result(file_name, error)


def parse_ai_response(file_name: str, content: Optional[str]) -> RawScanResult:
    """
    Parse one model reply into a RawScanResult.

    Args:
        file_name: Name of the scanned file
        content: Raw text of the model reply

    Returns:
        RawScanResult; `success` is False for empty or unparseable replies
    """
    if not content or not content.strip():
        return failure_result(file_name, EMPTY_RESPONSE_ERROR)

    try:
        parsed = json.loads(clean_ai_content(content))
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse model reply for {file_name} as JSON: {e}")
        return failure_result(file_name, UNPARSEABLE_RESPONSE_ERROR)

    if not isinstance(parsed, dict):
        logger.error(f"Model reply for {file_name} is not a JSON object")
        return failure_result(file_name, UNPARSEABLE_RESPONSE_ERROR)

    success = coerce_bool(parsed.get("success"))
    if success is False:
        return failure_result(file_name, str(parsed.get("error") or UNKNOWN_FAILURE_ERROR))

    normalized = normalize_scan_payload(parsed)
    normalized["success"] = True
    normalized["fileName"] = file_name
    return normalized  # type: ignore[return-value]


def parse_ai_responses(responses: List[Mapping[str, Any]]) -> List[RawScanResult]:
    """
    Parse a batch of model replies.

    Each item is {'fileName': ..., 'content': ...}, optionally with
    'status_code' when the provider call failed or 'error' when the call
    raised. Output order matches input order.
    """
    results: List[RawScanResult] = []
    for index, response in enumerate(responses):
        file_name = str(
            response.get("fileName") or response.get("name") or f"arquivo-{index + 1}"
        )
        status_code = response.get("status_code")
        if status_code and int(status_code) >= 400:
            results.append(provider_error_result(file_name, int(status_code)))
        elif response.get("error"):
            results.append(failure_result(file_name, str(response["error"])))
        else:
            results.append(parse_ai_response(file_name, response.get("content")))
    return results


# ============================================================================
# Input Scaffolding Validation
# ============================================================================

def get_file_name(item: Mapping[str, Any]) -> Optional[str]:
    """File identifier, accepting the key variants used by the scanners."""
    for key in ("fileName", "file_name", "name"):
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def coerce_raw_result(item: Any, fallback_name: Optional[str] = None) -> RawScanResult:
    """
    Validate the required scaffolding of one raw scan result.

    Args:
        item: Raw scan result
        fallback_name: File name used when the item carries none

    Raises:
        MalformedScanResultError: item is not a mapping, has no file name
            (and no fallback), or carries a non-boolean `success`
    """
    if not isinstance(item, Mapping):
        raise MalformedScanResultError(
            f"Scan result must be an object, got {type(item).__name__}"
        )

    file_name = get_file_name(item)
    if file_name is None:
        if not fallback_name:
            raise MalformedScanResultError("Scan result has no file name")
        logger.warning(f"Scan result has no file name, using {fallback_name!r}")
        file_name = fallback_name

    success = coerce_bool(item.get("success"))
    if success is None:
        raise MalformedScanResultError(
            f"Scan result has no usable 'success' flag: {item.get('success')!r}",
            file_name=file_name,
        )

    result: Dict[str, Any] = dict(item)
    result["fileName"] = file_name
    result["success"] = success
    return result  # type: ignore[return-value]


# ============================================================================
# Main Node Function
# ============================================================================

def scan_parser_node(state: ScanBatchState) -> dict:
    """
    Node A: Scan Parser

    Turns the raw model replies of the batch into RawScanResult dicts.
    Batches that arrive with raw_results already parsed pass through.

    Returns:
        dict with raw_results
    """
    print("--- NODE: Scan Parser ---")

    responses = state.get("ai_responses") or []
    if not responses:
        raw_results = state.get("raw_results") or []
        print(f"   Using {len(raw_results)} pre-parsed scan result(s)")
        return {"raw_results": raw_results}

    raw_results = parse_ai_responses(responses)
    failed = [r for r in raw_results if not r.get("success")]

    print(f"   Parsed {len(raw_results)} model reply(ies)")
    for result in failed:
        print(f"   ✗ {result['fileName']}: {result.get('error')}")

    return {"raw_results": raw_results}
