from typing import Any, Dict, Type, TypeVar

from fhir.resources.R4B.domainresource import DomainResource
from fhir.resources.R4B.patient import Patient

from fhir_etl.models.patient.dto import CanonicalPatient

T = TypeVar("T", bound=DomainResource)


def create_model(model: Type[T], data: Dict[str, Any], strict: bool) -> T:
    if strict:
        resource = model.model_validate(data)
        return resource  # type: ignore

    resource = model.model_construct(**data)
    return resource  # type: ignore


def _prune(obj: Any) -> Any:
    """
    Drops None values, empty strings and empty containers from a nested structure.
    """
    if isinstance(obj, dict):
        pruned = {k: _prune(v) for k, v in obj.items()}
        return {k: v for k, v in pruned.items() if v not in (None, "", [], {})}
    if isinstance(obj, list):
        items = [_prune(v) for v in obj]
        return [v for v in items if v not in (None, "", [], {})]
    return obj


def build_patient_payload(
    patient: CanonicalPatient, identifier_system: str
) -> Dict[str, Any]:
    """
    Renders a canonical patient as a FHIR R4 Patient JSON document.
    """
    meta: Dict[str, Any] = {
        "tag": [tag.model_dump(exclude_none=True) for tag in patient.tags],
    }
    if patient.profile:
        meta["profile"] = [patient.profile]

    telecom = None
    if patient.phone:
        telecom = [{"system": "phone", "value": patient.phone}]

    return _prune(
        {
            "resourceType": "Patient",
            "meta": meta,
            "identifier": [{"system": identifier_system, "value": patient.identifier}],
            "name": [{"family": patient.family, "given": [patient.given]}],
            "gender": patient.gender.value,
            "birthDate": patient.birth_date,
            "telecom": telecom,
        }
    )


def create_patient(data: Dict[str, Any], strict: bool = False) -> Patient:
    return create_model(Patient, data, strict)
