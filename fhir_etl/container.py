from typing import cast

import inject

from fhir_etl.config import Config, get_config
from fhir_etl.models.fhir.r4.types import Coding
from fhir_etl.services.api.authenticators.factory import AuthenticatorFactory
from fhir_etl.services.api.fhir_api import FhirApi
from fhir_etl.services.etl.pipeline import EtlPipeline
from fhir_etl.services.etl.verifier import Verifier
from fhir_etl.services.fhir.validation import FhirModelValidator
from fhir_etl.services.load.remote_store_client import RemoteStoreClient
from fhir_etl.services.mapping.patient_mapper import PatientMapper
from fhir_etl.services.query.bundle_reconciler import BundleReconciler
from fhir_etl.services.transaction.batch_builder import UpsertBatchBuilder
from fhir_etl.services.transaction.outcome_analyzer import TransactionOutcomeAnalyzer
from fhir_etl.stats import get_stats


def build_pipeline(config: Config) -> EtlPipeline:
    auth = AuthenticatorFactory(config=config.fhir).create_authenticator()
    api = FhirApi(
        base_url=config.fhir.base_url,
        timeout=config.fhir.timeout,
        connect_timeout=config.fhir.connect_timeout,
        backoff=config.fhir.backoff,
        auth=auth,
        retries=config.fhir.retries,
        mtls_cert=config.fhir.mtls_client_cert_path,
        mtls_key=config.fhir.mtls_client_key_path,
        verify_ca=config.fhir.verify_ca,
    )

    mapper = create_mapper(config)
    batch_builder = UpsertBatchBuilder(identifier_system=config.mapping.identifier_system)
    store_client = RemoteStoreClient(
        api=api,
        batch_builder=batch_builder,
        chunk_size=config.fhir.chunk_size,
        atomic=config.fhir.atomic,
    )

    verifier = None
    if config.etl.verify_after_load:
        verifier = Verifier(
            reconciler=BundleReconciler(store_client),
            identifier_system=config.mapping.identifier_system,
            tag=provenance_tag(config),
        )

    return EtlPipeline(
        mapper=mapper,
        batch_builder=batch_builder,
        store_client=store_client,
        analyzer=TransactionOutcomeAnalyzer(),
        verifier=verifier,
        validator=FhirModelValidator() if config.etl.validate_before_load else None,
        stats=get_stats(),
        mapping_workers=config.mapping.workers,
    )


def provenance_tag(config: Config) -> Coding:
    return Coding(
        system=config.mapping.tag_system,
        code=config.mapping.tag_code,
        display=config.mapping.tag_display,
    )


def create_mapper(config: Config) -> PatientMapper:
    return PatientMapper(
        tag=provenance_tag(config),
        decorate_names=config.mapping.decorate_names,
        given_suffix=config.mapping.given_suffix,
        family_suffix=config.mapping.family_suffix,
        profile=config.mapping.profile,
    )


def container_config(binder: inject.Binder) -> None:
    config = get_config()

    binder.bind(PatientMapper, create_mapper(config))
    binder.bind(
        UpsertBatchBuilder,
        UpsertBatchBuilder(identifier_system=config.mapping.identifier_system),
    )
    binder.bind_to_provider(EtlPipeline, lambda: build_pipeline(config))


def get_etl_pipeline() -> EtlPipeline:
    return cast(EtlPipeline, inject.instance(EtlPipeline))


def get_patient_mapper() -> PatientMapper:
    return inject.instance(PatientMapper)


def get_batch_builder() -> UpsertBatchBuilder:
    return inject.instance(UpsertBatchBuilder)


def setup_container() -> None:
    inject.configure(container_config, once=True)
