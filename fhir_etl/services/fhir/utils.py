import logging
from typing import Any, Dict, Iterable, List

from pydantic import ValidationError

from fhir_etl.models.fhir.r4.types import OperationOutcome

logger = logging.getLogger(__name__)

# Only this many issues of a single OperationOutcome end up in diagnostics
MAX_ISSUES = 5


def get_resource_type(resource: Dict[str, Any]) -> str:
    res_type_key = "resource_type" if "resource_type" in resource else "resourceType"
    resource_type: str = resource[res_type_key]

    return resource_type


def parse_status_code(status: Any) -> int | None:
    """
    Extract the numeric code from a Bundle.entry.response.status ("201 Created"), else None.
    """
    if status is None:
        return None
    try:
        return int(str(status).strip().split()[0])
    except (ValueError, AttributeError, IndexError):
        return None


def parse_location(location: str | None) -> tuple[str | None, str | None, str | None]:
    """
    Splits a response location ("Patient/123/_history/2", optionally absolute) into
    resource type, id and version.
    """
    if not location:
        return None, None, None

    parts = location.split("?")[0].rstrip("/").split("/")
    version = None
    if len(parts) >= 4 and parts[-2] == "_history":
        version = parts[-1]
        parts = parts[:-2]

    if len(parts) < 2:
        return None, None, None

    return parts[-2], parts[-1], version


def format_operation_outcome(data: Dict[str, Any] | None) -> List[str]:
    """
    Formats the issues of an OperationOutcome as "severity:code message" lines.
    """
    if not isinstance(data, dict) or data.get("resourceType") != "OperationOutcome":
        return []

    try:
        outcome = OperationOutcome.model_validate(data)
    except ValidationError:
        logger.warning("Unable to parse OperationOutcome: %s", data)
        return []

    lines: List[str] = []
    for issue in outcome.issue[:MAX_ISSUES]:
        details = ""
        if issue.details:
            details = str(issue.details.get("text") or "").strip()
        msg = details or (issue.diagnostics or "").strip()
        head = f"{issue.severity or ''}:{issue.code or ''}"
        lines.append(f"{head} {msg}" if msg else head)

    return lines


def iter_reference_strings(obj: Any) -> Iterable[str]:
    """
    Yield all Reference.reference strings within a (nested) FHIR resource dict.
    """
    if isinstance(obj, dict):
        for k, v in obj.items():
            if k == "reference" and isinstance(v, str):
                yield v
            else:
                yield from iter_reference_strings(v)
    elif isinstance(obj, list):
        for item in obj:
            yield from iter_reference_strings(item)


def relative_reference(reference: str) -> str | None:
    """
    Reduces an absolute or relative reference to "Type/id", ignoring versions.
    """
    resource_type, resource_id, _ = parse_location(reference)
    if resource_type is None or resource_id is None:
        return None
    return f"{resource_type}/{resource_id}"


# Characters with a meaning inside a FHIR search token, backslash first
_SEARCH_SPECIAL_CHARS = ("\\", ",", "|", "$")


def escape_search_value(value: str) -> str:
    """
    Escapes the FHIR search separators in a single token part, so that
    "12,34" is one value instead of two OR'ed values.
    """
    for char in _SEARCH_SPECIAL_CHARS:
        value = value.replace(char, f"\\{char}")
    return value


def token_param(system: str, value: str) -> str:
    return f"{escape_search_value(system)}|{escape_search_value(value)}"
