from collections.abc import Generator
from typing import Any, Dict, List
from unittest.mock import MagicMock, patch

import inject
import pytest

from fhir_etl.config import Config, reset_config
from fhir_etl.models.fhir.r4.types import Coding
from fhir_etl.services.api.authenticators.null_authenticator import NullAuthenticator
from fhir_etl.services.api.fhir_api import FhirApi
from fhir_etl.services.load.remote_store_client import RemoteStoreClient
from fhir_etl.services.mapping.patient_mapper import PatientMapper
from fhir_etl.services.transaction.batch_builder import UpsertBatchBuilder
from fhir_etl.services.transaction.outcome_analyzer import TransactionOutcomeAnalyzer
from fhir_etl.stats import reset_stats
from tests.fake_fhir_server import FakeFhirServer
from tests.test_config import ID_SYSTEM, get_test_config

PATCHED_REQUEST = "fhir_etl.services.api.api_service.request"
PATCHED_SLEEP = "fhir_etl.services.api.api_service.time.sleep"


@pytest.fixture(autouse=True)
def clean_globals() -> Generator[None, None, None]:
    yield
    reset_config()
    reset_stats()
    inject.clear()


@pytest.fixture()
def config() -> Config:
    return get_test_config()


@pytest.fixture()
def tag() -> Coding:
    return Coding(
        system="http://terminology.hl7.org/CodeSystem/v3-ObservationValue",
        code="SUBSET",
        display="Test Data",
    )


@pytest.fixture()
def mapper(tag: Coding) -> PatientMapper:
    return PatientMapper(tag=tag)


@pytest.fixture()
def batch_builder() -> UpsertBatchBuilder:
    return UpsertBatchBuilder(identifier_system=ID_SYSTEM)


@pytest.fixture()
def analyzer() -> TransactionOutcomeAnalyzer:
    return TransactionOutcomeAnalyzer()


@pytest.fixture()
def records() -> List[Dict[str, str]]:
    return [
        {"Id": "A", "FirstName": "Anna", "LastName": "Smith", "Gender": "female", "BirthDate": "1980-01-01", "Phone": "0612345678"},
        {"Id": "B", "FirstName": "Bob", "LastName": "Jones", "Gender": "male", "BirthDate": "1975-05-12", "Phone": ""},
        {"Id": "C", "FirstName": "Chris", "LastName": "Brown", "Gender": "x", "BirthDate": "2001-11-30", "Phone": "0201234567"},
    ]


@pytest.fixture()
def fake_server() -> Generator[FakeFhirServer, Any, None]:
    server = FakeFhirServer()
    with patch(PATCHED_REQUEST, side_effect=server), patch(PATCHED_SLEEP):
        yield server


@pytest.fixture()
def fhir_api(fake_server: FakeFhirServer) -> FhirApi:
    return FhirApi(
        base_url=fake_server.base_url,
        timeout=1,
        connect_timeout=1,
        backoff=0,
        auth=NullAuthenticator(),
        retries=3,
    )


@pytest.fixture()
def store_client(fhir_api: FhirApi, batch_builder: UpsertBatchBuilder) -> RemoteStoreClient:
    return RemoteStoreClient(api=fhir_api, batch_builder=batch_builder, chunk_size=50)


@pytest.fixture()
def mock_api() -> MagicMock:
    return MagicMock(spec=FhirApi)
