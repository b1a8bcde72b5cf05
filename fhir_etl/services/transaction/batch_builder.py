from typing import Any, Dict, Sequence
import uuid

from fhir_etl.models.patient.dto import CanonicalPatient
from fhir_etl.models.transaction.dto import BatchRequest, ConditionalKey, UpsertOperation
from fhir_etl.services.fhir.resources.factory import build_patient_payload


class UpsertBatchBuilder:
    """
    Turns canonical patients into conditional upserts keyed on the business
    identifier, so resubmitting the same input updates in place.
    """

    def __init__(self, identifier_system: str) -> None:
        self.__identifier_system = identifier_system

    @property
    def identifier_system(self) -> str:
        return self.__identifier_system

    def build(self, resources: Sequence[CanonicalPatient]) -> BatchRequest:
        operations = []
        seen: set[str] = set()
        for resource in resources:
            if resource.identifier in seen:
                raise ValueError(
                    f"Identifier '{resource.identifier}' occurs more than once in one batch"
                )
            seen.add(resource.identifier)
            operations.append(
                UpsertOperation(
                    conditional_key=ConditionalKey(
                        system=self.__identifier_system, value=resource.identifier
                    ),
                    payload=resource,
                )
            )

        return BatchRequest(operations=tuple(operations))

    def to_bundle(self, batch: BatchRequest, atomic: bool = True) -> Dict[str, Any]:
        """
        Serializes a batch as a FHIR transaction (atomic) or batch Bundle.
        """
        return {
            "resourceType": "Bundle",
            "type": "transaction" if atomic else "batch",
            "entry": [self.to_entry(op) for op in batch.operations],
        }

    def to_entry(self, operation: UpsertOperation) -> Dict[str, Any]:
        key = operation.conditional_key
        return {
            "fullUrl": f"urn:uuid:{uuid.uuid5(uuid.NAMESPACE_URL, f'{key.system}|{key.value}')}",
            "resource": build_patient_payload(operation.payload, key.system),
            "request": {"method": operation.method, "url": operation.request_url},
        }
