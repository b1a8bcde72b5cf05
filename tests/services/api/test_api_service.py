from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from requests.exceptions import ConnectionError, Timeout
from yarl import URL

from fhir_etl.exceptions import PipelineCancelled, TransportError
from fhir_etl.services.api.api_service import HttpService, is_retryable_status
from fhir_etl.services.api.authenticators.authenticator import Authenticator
from fhir_etl.services.api.authenticators.bearer_token_authenticator import (
    BearerTokenAuthenticator,
)
from fhir_etl.services.cancellation import CancellationToken

PATCHED_MODULE = "fhir_etl.services.api.api_service.request"
PATCHED_SLEEP = "fhir_etl.services.api.api_service.time.sleep"
BASE_URL = "http://example.com/fhir"

MOCK_AUTH = "some-auth"


class MockAuthenticator(Authenticator):
    """
    Dummy class for testing purposes only
    """

    def get_authentication_header(self) -> str:
        return "Bearer some-token"

    def get_auth(self) -> Any:
        return MOCK_AUTH


class SimpleHttpService(HttpService):
    pass


def _response(status_code: int) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    return response


@pytest.fixture()
def http_service() -> HttpService:
    return SimpleHttpService(base_url=BASE_URL, timeout=5, retries=3, backoff=0.5)


@patch(PATCHED_MODULE)
def test_do_request_should_succeed(mock_request: MagicMock, http_service: HttpService) -> None:
    mock_request.return_value = _response(200)

    actual = http_service.do_request(method="POST", json={"resourceType": "Bundle"})

    assert actual.status_code == 200
    mock_request.assert_called_once()
    kwargs = mock_request.call_args.kwargs
    assert kwargs["method"] == "POST"
    assert kwargs["url"] == BASE_URL
    assert kwargs["json"] == {"resourceType": "Bundle"}
    assert kwargs["headers"]["Content-Type"] == "application/fhir+json"
    assert "Authorization" not in kwargs["headers"]
    assert kwargs["cert"] is None


@patch(PATCHED_MODULE)
def test_do_request_should_keep_query_param_order(
    mock_request: MagicMock, http_service: HttpService
) -> None:
    mock_request.return_value = _response(200)
    params = [("_tag", "sys|SUBSET"), ("_sort", "-_lastUpdated"), ("_count", "3")]

    http_service.do_request(method="GET", sub_route="Patient", params=params)

    url = URL(mock_request.call_args.kwargs["url"])
    assert url.path == "/fhir/Patient"
    assert list(url.query.items()) == params


@patch(PATCHED_MODULE)
def test_do_request_should_use_absolute_url(
    mock_request: MagicMock, http_service: HttpService
) -> None:
    mock_request.return_value = _response(200)

    http_service.do_request(method="GET", url="http://other.example.com/page?token=abc")

    assert mock_request.call_args.kwargs["url"] == "http://other.example.com/page?token=abc"


@patch(PATCHED_MODULE)
def test_do_request_with_authenticator_should_send_header(mock_request: MagicMock) -> None:
    service = SimpleHttpService(
        base_url=BASE_URL,
        timeout=5,
        retries=1,
        backoff=0,
        authenticator=MockAuthenticator(),
    )
    mock_request.return_value = _response(200)

    service.do_request(method="GET")

    kwargs = mock_request.call_args.kwargs
    assert kwargs["headers"]["Authorization"] == "Bearer some-token"
    assert kwargs["auth"] == MOCK_AUTH


@patch(PATCHED_MODULE)
def test_do_request_should_pass_tls_options_and_timeouts(mock_request: MagicMock) -> None:
    service = SimpleHttpService(
        base_url=BASE_URL,
        timeout=30,
        connect_timeout=10,
        retries=1,
        backoff=0,
        authenticator=BearerTokenAuthenticator("abc"),
        mtls_cert="client.crt",
        mtls_key="client.key",
        verify_ca="ca.pem",
    )
    mock_request.return_value = _response(200)

    service.do_request(method="GET")

    kwargs = mock_request.call_args.kwargs
    assert kwargs["timeout"] == (10, 30)
    assert kwargs["cert"] == ("client.crt", "client.key")
    assert kwargs["verify"] == "ca.pem"
    assert kwargs["headers"]["Authorization"] == "Bearer abc"


@patch(PATCHED_SLEEP)
@patch(PATCHED_MODULE)
def test_do_request_should_retry_on_timeout(
    mock_request: MagicMock, mock_sleep: MagicMock, http_service: HttpService
) -> None:
    mock_request.side_effect = [Timeout(), ConnectionError(), _response(200)]

    actual = http_service.do_request(method="POST", json={})

    assert actual.status_code == 200
    assert mock_request.call_count == 3
    assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]


@pytest.mark.parametrize("status", [408, 429, 500, 502, 503, 504])
@patch(PATCHED_SLEEP)
@patch(PATCHED_MODULE)
def test_do_request_should_retry_transient_status(
    mock_request: MagicMock, mock_sleep: MagicMock, http_service: HttpService, status: int
) -> None:
    mock_request.side_effect = [_response(status), _response(201)]

    actual = http_service.do_request(method="POST", json={})

    assert actual.status_code == 201
    assert mock_request.call_count == 2


@pytest.mark.parametrize("status", [400, 401, 404, 409, 412, 422])
@patch(PATCHED_SLEEP)
@patch(PATCHED_MODULE)
def test_do_request_should_not_retry_client_errors(
    mock_request: MagicMock, mock_sleep: MagicMock, http_service: HttpService, status: int
) -> None:
    mock_request.return_value = _response(status)

    actual = http_service.do_request(method="POST", json={})

    assert actual.status_code == status
    mock_request.assert_called_once()
    mock_sleep.assert_not_called()


@patch(PATCHED_SLEEP)
@patch(PATCHED_MODULE)
def test_do_request_should_raise_after_all_attempts(
    mock_request: MagicMock, mock_sleep: MagicMock, http_service: HttpService
) -> None:
    mock_request.return_value = _response(503)

    with pytest.raises(TransportError) as e:
        http_service.do_request(method="POST", json={})

    assert e.value.status_code == 503
    assert mock_request.call_count == 3
    assert mock_sleep.call_count == 2


@patch(PATCHED_SLEEP)
@patch(PATCHED_MODULE)
def test_do_request_should_raise_on_persistent_connection_errors(
    mock_request: MagicMock, mock_sleep: MagicMock, http_service: HttpService
) -> None:
    mock_request.side_effect = ConnectionError()

    with pytest.raises(TransportError) as e:
        http_service.do_request(method="GET")

    assert e.value.status_code is None


@patch(PATCHED_MODULE)
def test_do_request_should_honour_cancellation(
    mock_request: MagicMock, http_service: HttpService
) -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(PipelineCancelled):
        http_service.do_request(method="GET", cancellation=token)

    mock_request.assert_not_called()


def test_retryable_status() -> None:
    assert is_retryable_status(408)
    assert is_retryable_status(429)
    assert is_retryable_status(500)
    assert is_retryable_status(599)
    assert not is_retryable_status(200)
    assert not is_retryable_status(404)
    assert not is_retryable_status(422)


@patch(PATCHED_SLEEP)
@patch(PATCHED_MODULE)
def test_do_request_should_stop_waiting_when_cancelled_during_backoff(
    mock_request: MagicMock, mock_sleep: MagicMock
) -> None:
    service = SimpleHttpService(base_url=BASE_URL, timeout=5, retries=3, backoff=60)
    token = CancellationToken()

    def cancel_and_fail(**kwargs: Any) -> MagicMock:
        token.cancel()
        return _response(503)

    mock_request.side_effect = cancel_and_fail

    with pytest.raises(PipelineCancelled):
        service.do_request(method="POST", json={}, cancellation=token)

    mock_request.assert_called_once()
    mock_sleep.assert_not_called()


@patch(PATCHED_MODULE)
def test_do_request_should_wait_on_token_between_attempts(mock_request: MagicMock) -> None:
    service = SimpleHttpService(base_url=BASE_URL, timeout=5, retries=2, backoff=0.01)
    mock_request.side_effect = [_response(503), _response(200)]

    actual = service.do_request(method="GET", cancellation=CancellationToken())

    assert actual.status_code == 200
    assert mock_request.call_count == 2
