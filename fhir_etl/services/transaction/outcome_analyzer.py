import logging
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError

from fhir_etl.exceptions import ProtocolError
from fhir_etl.models.fhir.r4.types import Bundle, Entry
from fhir_etl.models.transaction.dto import (
    BatchOutcome,
    BatchRequest,
    EntryOutcome,
    EntryStatus,
)
from fhir_etl.services.fhir.utils import (
    format_operation_outcome,
    parse_location,
    parse_status_code,
)

logger = logging.getLogger(__name__)


def classify_status(code: int | None) -> EntryStatus | None:
    """
    Maps an entry status code onto the outcome enum. 201 means a new resource,
    any other 2xx an update of an existing one, 4xx and 5xx a failure. Returns
    None for anything else so the caller can flag it as unrecognized.
    """
    if code is None:
        return None
    if code == 201:
        return EntryStatus.CREATED
    if 200 <= code < 300:
        return EntryStatus.UPDATED
    if 400 <= code < 600:
        return EntryStatus.FAILED
    return None


class TransactionOutcomeAnalyzer:
    def analyze(self, raw_response: Dict[str, Any], batch: BatchRequest) -> BatchOutcome:
        """
        Classifies every response entry, keeping request order so outcome[i]
        describes batch.operations[i].
        """
        try:
            bundle = Bundle.model_validate(raw_response)
        except ValidationError as e:
            raise ProtocolError(f"Response is not a valid Bundle: {e}")

        entries: Sequence[Entry] = bundle.entry or []
        if len(entries) != len(batch.operations):
            logger.warning(
                "Response entry count mismatch: request=%s response=%s",
                len(batch.operations),
                len(entries),
            )

        outcomes: List[EntryOutcome] = []
        for i, operation in enumerate(batch.operations):
            index = batch.offset + i
            identifier = operation.conditional_key.value
            if i >= len(entries):
                outcomes.append(
                    EntryOutcome(
                        operation_index=index,
                        identifier=identifier,
                        status=EntryStatus.FAILED,
                        diagnostics=("no response entry",),
                    )
                )
                continue

            outcomes.append(self.__analyze_entry(index, identifier, entries[i]))

        return BatchOutcome(entries=tuple(outcomes))

    def reject(
        self,
        batch: BatchRequest,
        status_code: int | None,
        diagnostics: Sequence[str] = (),
    ) -> BatchOutcome:
        """
        Outcome for a chunk the server refused as a whole: every entry failed.
        """
        return BatchOutcome(
            entries=tuple(
                EntryOutcome(
                    operation_index=batch.offset + i,
                    identifier=op.conditional_key.value,
                    status=EntryStatus.FAILED,
                    status_code=status_code,
                    diagnostics=tuple(diagnostics) or ("bundle rejected by server",),
                )
                for i, op in enumerate(batch.operations)
            )
        )

    @staticmethod
    def __analyze_entry(index: int, identifier: str, entry: Entry) -> EntryOutcome:
        response = entry.response
        raw_status = response.status if response is not None else None
        code = parse_status_code(raw_status)
        status = classify_status(code)

        diagnostics: List[str] = []
        # The outcome is either in response.outcome or returned as the entry resource
        if response is not None and response.outcome:
            diagnostics.extend(format_operation_outcome(response.outcome))
        if entry.resource and entry.resource.get("resourceType") == "OperationOutcome":
            diagnostics.extend(format_operation_outcome(entry.resource))

        if status is None:
            status = EntryStatus.FAILED
            diagnostics.insert(0, f"unrecognized status '{raw_status}'")

        _, server_id, version_id = parse_location(
            response.location if response is not None else None
        )
        if server_id is None and entry.resource and entry.resource.get("resourceType") == "Patient":
            server_id = entry.resource.get("id")

        return EntryOutcome(
            operation_index=index,
            identifier=identifier,
            status=status,
            status_code=code,
            server_id=server_id,
            version_id=version_id,
            diagnostics=tuple(diagnostics),
        )
