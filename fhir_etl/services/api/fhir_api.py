from typing import Any, Dict
import logging

from requests import JSONDecodeError, Response

from fhir_etl.exceptions import BundleRejectedError, ProtocolError
from fhir_etl.services.api.api_service import HttpService, QueryParams
from fhir_etl.services.api.authenticators.authenticator import Authenticator
from fhir_etl.services.cancellation import CancellationToken
from fhir_etl.services.fhir.utils import format_operation_outcome

ERR_MSG_FORMAT = "FHIR API error: %s"
logger = logging.getLogger(__name__)


class FhirApi(HttpService):
    """
    Transport for a FHIR server: posts transaction/batch bundles and runs searches.
    Every call returns the decoded JSON bundle.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float,
        backoff: float,
        auth: Authenticator,
        retries: int,
        connect_timeout: float | None = None,
        mtls_cert: str | None = None,
        mtls_key: str | None = None,
        verify_ca: str | bool = True,
    ):
        super().__init__(
            base_url=base_url,
            timeout=timeout,
            connect_timeout=connect_timeout,
            backoff=backoff,
            retries=retries,
            authenticator=auth,
            mtls_cert=mtls_cert,
            mtls_key=mtls_key,
            verify_ca=verify_ca,
        )

    def post_bundle(
        self, bundle: Dict[str, Any], cancellation: CancellationToken | None = None
    ) -> Dict[str, Any]:
        """
        Post a transaction or batch bundle to the server root. Returns the
        response bundle. A 4xx on the bundle as a whole raises BundleRejectedError.
        """
        response = self.do_request("POST", json=bundle, cancellation=cancellation)
        return self.__read_bundle(response)

    def search(
        self,
        resource_type: str,
        params: QueryParams,
        cancellation: CancellationToken | None = None,
    ) -> Dict[str, Any]:
        """
        Search for resources of a given type. Returns the first searchset page.
        """
        response = self.do_request(
            method="GET",
            sub_route=resource_type,
            params=params,
            cancellation=cancellation,
        )
        return self.__read_bundle(response)

    def get_page(
        self, url: str, cancellation: CancellationToken | None = None
    ) -> Dict[str, Any]:
        """
        Follow a paging link as handed out by the server.
        """
        response = self.do_request(method="GET", url=url, cancellation=cancellation)
        return self.__read_bundle(response)

    def __read_bundle(self, response: Response) -> Dict[str, Any]:
        if response.status_code >= 400:
            # See if we can get an Operation Outcome from the error response
            try:
                data = response.json()
            except JSONDecodeError:
                data = None

            diagnostics = format_operation_outcome(data)
            logger.error(ERR_MSG_FORMAT, diagnostics or response.text)
            raise BundleRejectedError(
                f"FHIR server returned HTTP {response.status_code}",
                status_code=response.status_code,
                diagnostics=diagnostics,
            )

        try:
            data = response.json()
        except JSONDecodeError:
            logger.error("Failed to decode JSON response: %s", response.text)
            raise ProtocolError(
                f"FHIR server returned a non JSON response (status {response.status_code})"
            )

        if not isinstance(data, dict) or data.get("resourceType") != "Bundle":
            resource_type = data.get("resourceType") if isinstance(data, dict) else None
            details = "; ".join(format_operation_outcome(data))
            logger.error(
                "FHIR server returned %s instead of a Bundle %s",
                resource_type or "<missing>",
                details,
            )
            raise ProtocolError(
                f"Expected a Bundle but received {resource_type or 'an unknown document'}"
            )

        return data
