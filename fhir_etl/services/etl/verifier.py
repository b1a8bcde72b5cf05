import logging
from typing import Any, Dict, List, Sequence

from fhir_etl.models.fhir.r4.types import Coding
from fhir_etl.models.query.dto import EntryRole, QueryDescriptor
from fhir_etl.models.report.dto import VerificationDiscrepancy, VerificationResult
from fhir_etl.services.cancellation import CancellationToken
from fhir_etl.services.query.bundle_reconciler import BundleReconciler
from fhir_etl.services.query.query_builder import QueryBuilder

logger = logging.getLogger(__name__)


class Verifier:
    """
    Reads back the most recently loaded patients carrying the provenance tag and
    compares their identifiers with what was submitted.
    """

    def __init__(
        self,
        reconciler: BundleReconciler,
        identifier_system: str,
        tag: Coding,
        resource_type: str = "Patient",
    ) -> None:
        self.__reconciler = reconciler
        self.__identifier_system = identifier_system
        self.__tag = tag
        self.__resource_type = resource_type

    def build_query(self, count: int) -> QueryDescriptor:
        return (
            QueryBuilder(self.__resource_type)
            .tagged(self.__tag.system, self.__tag.code or "")
            .sort_by("_lastUpdated", descending=True)
            .limit(count)
            .build()
        )

    def verify(
        self,
        expected_identifiers: Sequence[str],
        cancellation: CancellationToken | None = None,
    ) -> VerificationResult:
        expected = list(dict.fromkeys(expected_identifiers))
        if not expected:
            return VerificationResult(expected_count=0, verified_count=0)

        descriptor = self.build_query(len(expected))

        found: List[str] = []
        primaries = 0
        for entry in self.__reconciler.execute(descriptor, cancellation):
            if entry.role != EntryRole.PRIMARY:
                continue
            primaries += 1
            identifier = self.__identifier_of(entry.resource)
            if identifier is not None:
                found.append(identifier)
            if primaries >= len(expected):
                break

        discrepancies: List[VerificationDiscrepancy] = []
        if primaries < len(expected):
            discrepancies.append(
                VerificationDiscrepancy(
                    message=f"expected {len(expected)} resources, query returned {primaries}"
                )
            )
        found_set = set(found)
        for identifier in expected:
            if identifier not in found_set:
                discrepancies.append(
                    VerificationDiscrepancy(
                        identifier=identifier,
                        message="not found among the most recently updated tagged resources",
                    )
                )

        for d in discrepancies:
            logger.warning("Verification mismatch: %s %s", d.identifier or "", d.message)

        verified = [i for i in expected if i in found_set]
        return VerificationResult(
            expected_count=len(expected),
            verified_count=len(verified),
            identifiers=found,
            discrepancies=discrepancies,
        )

    def __identifier_of(self, resource: Dict[str, Any]) -> str | None:
        for identifier in resource.get("identifier") or []:
            if identifier.get("system") == self.__identifier_system:
                value = identifier.get("value")
                return str(value) if value is not None else None
        return None
