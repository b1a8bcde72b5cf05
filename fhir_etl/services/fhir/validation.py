from abc import ABC, abstractmethod
import logging
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field, ValidationError

from fhir_etl.services.fhir.resources.factory import create_patient

logger = logging.getLogger(__name__)


class ValidationIssue(BaseModel):
    severity: Literal["fatal", "error", "warning", "information"]
    message: str
    path: str


class ValidationOutcome(BaseModel):
    issues: List[ValidationIssue] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not any(i.severity in ("fatal", "error") for i in self.issues)


class ResourceValidator(ABC):
    """
    Validation rule engine. The pipeline only looks at the outcome.
    """

    @abstractmethod
    def validate(self, resource: Dict[str, Any]) -> ValidationOutcome: ...


class FhirModelValidator(ResourceValidator):
    """
    Validates a Patient document against the structural rules of the R4B models.
    """

    def validate(self, resource: Dict[str, Any]) -> ValidationOutcome:
        try:
            create_patient(resource, strict=True)
        except ValidationError as e:
            return ValidationOutcome(issues=[_to_issue(err) for err in e.errors()])

        return ValidationOutcome()


def _to_issue(error: Any) -> ValidationIssue:
    loc = error.get("loc") or ()
    path = ".".join(str(part) for part in loc) or "Patient"
    return ValidationIssue(severity="error", message=str(error.get("msg", "")), path=path)
