import logging
from typing import List, Sequence

from fhir_etl.exceptions import (
    BundleRejectedError,
    FatalBatchError,
    PipelineCancelled,
    ProtocolError,
    QueryBuildError,
    TransportError,
)
from fhir_etl.models.patient.dto import CanonicalPatient, RawRecord
from fhir_etl.models.report.dto import FailureDetail, RunReport, VerificationDiscrepancy
from fhir_etl.models.transaction.dto import BatchOutcome, EntryStatus
from fhir_etl.services.cancellation import CancellationToken
from fhir_etl.services.etl.verifier import Verifier
from fhir_etl.services.fhir.resources.factory import build_patient_payload
from fhir_etl.services.fhir.validation import ResourceValidator
from fhir_etl.services.load.remote_store_client import RemoteStoreClient
from fhir_etl.services.mapping.patient_mapper import PatientMapper
from fhir_etl.services.transaction.batch_builder import UpsertBatchBuilder
from fhir_etl.services.transaction.outcome_analyzer import TransactionOutcomeAnalyzer
from fhir_etl.stats import NoopStats, Stats

logger = logging.getLogger(__name__)


class EtlPipeline:
    """
    Transform, load and verify in one sequential run:

    1. map raw records onto canonical patients
    2. optionally validate them
    3. build one batch of conditional upserts
    4. submit it chunk by chunk, analyzing every response
    5. optionally read the loaded patients back

    A chunk that cannot be delivered aborts the run, but everything received up
    to that point still ends up in the report. The same holds for cancellation.
    """

    def __init__(
        self,
        mapper: PatientMapper,
        batch_builder: UpsertBatchBuilder,
        store_client: RemoteStoreClient,
        analyzer: TransactionOutcomeAnalyzer,
        verifier: Verifier | None = None,
        validator: ResourceValidator | None = None,
        stats: Stats = NoopStats(),
        mapping_workers: int = 1,
    ) -> None:
        self.__mapper = mapper
        self.__batch_builder = batch_builder
        self.__store_client = store_client
        self.__analyzer = analyzer
        self.__verifier = verifier
        self.__validator = validator
        self.__stats = stats
        self.__mapping_workers = mapping_workers

    def run(
        self,
        records: Sequence[RawRecord],
        cancellation: CancellationToken | None = None,
    ) -> RunReport:
        with self.__stats.timer("etl.run"):
            report = self.__run(records, cancellation)

        self.__stats.inc("etl.records.read", report.records_read)
        self.__stats.inc("etl.records.mapping_errors", report.mapping_errors)
        self.__stats.inc("etl.records.validation_errors", report.validation_errors)
        self.__stats.inc("etl.records.created", report.created)
        self.__stats.inc("etl.records.updated", report.updated)
        self.__stats.inc("etl.records.failed", report.failed)

        logger.info(
            "ETL run finished: read=%s mapping_errors=%s validation_errors=%s created=%s updated=%s failed=%s aborted=%s cancelled=%s",
            report.records_read,
            report.mapping_errors,
            report.validation_errors,
            report.created,
            report.updated,
            report.failed,
            report.aborted,
            report.cancelled,
        )
        return report

    def __run(
        self, records: Sequence[RawRecord], cancellation: CancellationToken | None
    ) -> RunReport:
        report = RunReport(records_read=len(records))

        mapped = self.__mapper.map_all(records, workers=self.__mapping_workers)
        report.mapping_errors = len(mapped.errors)
        for err in mapped.errors:
            report.failures.append(
                FailureDetail(
                    source_index=err.source_index,
                    stage="mapping",
                    diagnostics=[str(err)],
                )
            )

        resources = self.__validate(mapped.resources, report)
        if not resources:
            logger.warning("No resources left to load")
            return report

        batch = self.__batch_builder.build(resources)
        outcome = BatchOutcome()
        try:
            for response in self.__store_client.submit_batch(batch, cancellation):
                if response.rejected:
                    chunk_outcome = self.__analyzer.reject(
                        response.chunk, response.status_code, response.diagnostics
                    )
                else:
                    chunk_outcome = self.__analyzer.analyze(response.payload or {}, response.chunk)
                outcome = outcome.merge(chunk_outcome)
        except FatalBatchError as e:
            logger.error("Load aborted at chunk offset %s: %s", e.chunk_offset, e)
            report.aborted = True
            report.abort_reason = str(e)
        except ProtocolError as e:
            logger.error("Load aborted, unreadable transaction response: %s", e)
            report.aborted = True
            report.abort_reason = str(e)
        except PipelineCancelled:
            logger.warning("Load cancelled after %s of %s operations", len(outcome), len(batch))
            report.cancelled = True

        self.__record_outcome(outcome, resources, report)

        if report.aborted or report.cancelled or self.__verifier is None:
            return report

        loaded = [
            e.identifier
            for e in outcome.entries
            if e.status in (EntryStatus.CREATED, EntryStatus.UPDATED)
        ]
        if loaded:
            self.__verify(loaded, report, cancellation)

        return report

    def __validate(
        self, resources: Sequence[CanonicalPatient], report: RunReport
    ) -> List[CanonicalPatient]:
        if self.__validator is None:
            return list(resources)

        valid: List[CanonicalPatient] = []
        for resource in resources:
            payload = build_patient_payload(resource, self.__batch_builder.identifier_system)
            outcome = self.__validator.validate(payload)
            if outcome.valid:
                valid.append(resource)
                continue

            messages = [f"{i.severity}: {i.path}: {i.message}" for i in outcome.issues]
            logger.warning(
                "Record %s (%s) failed validation: %s",
                resource.source_index,
                resource.identifier,
                "; ".join(messages),
            )
            report.validation_errors += 1
            report.failures.append(
                FailureDetail(
                    source_index=resource.source_index,
                    identifier=resource.identifier,
                    stage="validation",
                    diagnostics=messages,
                )
            )
        return valid

    @staticmethod
    def __record_outcome(
        outcome: BatchOutcome, resources: Sequence[CanonicalPatient], report: RunReport
    ) -> None:
        report.created = outcome.created
        report.updated = outcome.updated
        report.failed = outcome.failed

        for failure in outcome.failures():
            source_index = None
            if failure.operation_index < len(resources):
                source_index = resources[failure.operation_index].source_index
            report.failures.append(
                FailureDetail(
                    source_index=source_index,
                    identifier=failure.identifier,
                    stage="load",
                    status_code=failure.status_code,
                    diagnostics=list(failure.diagnostics),
                )
            )

    def __verify(
        self,
        identifiers: List[str],
        report: RunReport,
        cancellation: CancellationToken | None,
    ) -> None:
        assert self.__verifier is not None
        try:
            result = self.__verifier.verify(identifiers, cancellation)
        except QueryBuildError as e:
            logger.error("Verification query is invalid: %s", e)
            report.aborted = True
            report.abort_reason = str(e)
            return
        except PipelineCancelled:
            logger.warning("Verification cancelled")
            report.cancelled = True
            return
        except (TransportError, ProtocolError, BundleRejectedError) as e:
            logger.warning("Verification query failed: %s", e)
            report.verification_discrepancies.append(
                VerificationDiscrepancy(message=f"verification query failed: {e}")
            )
            return

        report.verified_count = result.verified_count
        report.verification_discrepancies.extend(result.discrepancies)
