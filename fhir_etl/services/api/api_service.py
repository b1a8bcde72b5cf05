from abc import ABC
import logging
import time
from typing import Any, Dict, List, Sequence, Tuple
from requests import request, Response
from requests.exceptions import Timeout, ConnectionError
from yarl import URL

from fhir_etl.exceptions import TransportError
from fhir_etl.services.api.authenticators.authenticator import Authenticator
from fhir_etl.services.cancellation import CancellationToken

logger = logging.getLogger(__name__)

# Besides every 5xx, these statuses signal a transient condition that is safe to retry
RETRYABLE_STATUS_CODES = frozenset({408, 429})


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or 500 <= status_code < 600


QueryParams = Dict[str, Any] | Sequence[Tuple[str, str]]


class HttpService(ABC):
    """
    Base class for making HTTP requests with retry logic
    """

    def __init__(
        self,
        base_url: str,
        timeout: float,
        retries: int,
        backoff: float,
        connect_timeout: float | None = None,
        authenticator: Authenticator | None = None,
        mtls_cert: str | None = None,
        mtls_key: str | None = None,
        verify_ca: str | bool = True,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.authenticator = authenticator
        self.__mtls_cert = mtls_cert
        self.__mtls_key = mtls_key
        self.__verify_ca = verify_ca
        self.__timeout = timeout
        self.__connect_timeout = connect_timeout
        self.__retries = max(1, retries)
        self.__backoff = backoff

    def do_request(
        self,
        method: str,
        sub_route: str | None = None,
        json: Dict[str, Any] | None = None,
        params: QueryParams | None = None,
        url: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> Response:
        """
        Perform an HTTP request. Connection errors, timeouts and transient 5xx
        responses are retried with an exponential backoff, so only use this for
        idempotent requests. Raises TransportError once all attempts failed.
        """
        headers = self.make_headers()
        target = URL(url) if url is not None else self.make_target_url(sub_route, params)
        last_status: int | None = None

        for attempt in range(self.__retries):
            if cancellation is not None:
                cancellation.raise_if_cancelled()

            try:
                logger.info(f"Making HTTP {method} request to {target}")
                response = request(
                    method=method,
                    url=str(target),
                    headers=headers,
                    timeout=self.make_timeout(),
                    json=json,
                    cert=(
                        (self.__mtls_cert, self.__mtls_key)
                        if self.__mtls_cert and self.__mtls_key
                        else None
                    ),
                    verify=self.__verify_ca,
                    auth=self.authenticator.get_auth() if self.authenticator else None,
                )
                if not is_retryable_status(response.status_code):
                    return response

                last_status = response.status_code
                logger.warning(
                    f"Server returned {response.status_code} for {target} on attempt {attempt}"
                )
            except (
                ConnectionError,
                Timeout,
            ) as e:
                logger.warning(
                    f"Failed to make request to {target} on attempt {attempt}: {type(e).__name__}"
                )

            if attempt < self.__retries - 1:
                delay = self.__backoff * (2**attempt)
                logger.info(f"Retrying in {delay} seconds")
                if cancellation is None:
                    time.sleep(delay)
                elif cancellation.wait(delay):
                    cancellation.raise_if_cancelled()

        logger.error(f"Failed to make request to {target} after {self.__retries} attempts")
        raise TransportError(
            f"Failed to make request after {self.__retries} attempts",
            status_code=last_status,
        )

    def make_timeout(self) -> float | Tuple[float, float]:
        if self.__connect_timeout is None:
            return self.__timeout
        return (self.__connect_timeout, self.__timeout)

    def make_headers(self) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/fhir+json",
            "Accept": "application/fhir+json",
        }
        if self.authenticator:
            value = self.authenticator.get_authentication_header()
            if value:
                headers["Authorization"] = value

        return headers

    def make_target_url(
        self, sub_route: str | None = None, params: QueryParams | None = None
    ) -> URL:
        url = self.base_url
        if sub_route:
            url = f"{url}/{sub_route.lstrip('/')}"

        target = URL(url)
        if params:
            query: List[Tuple[str, str]] = (
                list(params.items()) if isinstance(params, dict) else list(params)
            )
            return target.with_query(query)

        return target
