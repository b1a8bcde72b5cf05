import logging
import time
from typing import Any, Dict, Iterator, List

from pydantic import ValidationError

from fhir_etl.exceptions import (
    BundleRejectedError,
    FatalBatchError,
    ProtocolError,
    TransportError,
)
from fhir_etl.models.fhir.r4.types import Bundle
from fhir_etl.models.query.dto import BundlePage, PageEntry, QueryDescriptor
from fhir_etl.models.transaction.dto import BatchRequest, ChunkResponse
from fhir_etl.services.api.fhir_api import FhirApi
from fhir_etl.services.cancellation import CancellationToken
from fhir_etl.services.fhir.utils import get_resource_type
from fhir_etl.services.transaction.batch_builder import UpsertBatchBuilder

logger = logging.getLogger(__name__)


class RemoteStoreClient:
    """
    Call discipline on top of the FHIR transport: batches are split into chunks
    that are submitted one at a time, in order. Each chunk only holds
    conditional upserts, so the transport may resend it verbatim on timeouts
    and 5xx responses without any deduplication.
    """

    def __init__(
        self,
        api: FhirApi,
        batch_builder: UpsertBatchBuilder,
        chunk_size: int,
        atomic: bool = True,
    ) -> None:
        self.__api = api
        self.__batch_builder = batch_builder
        self.__chunk_size = chunk_size
        self.__atomic = atomic

    @property
    def atomic(self) -> bool:
        return self.__atomic

    def submit_batch(
        self, batch: BatchRequest, cancellation: CancellationToken | None = None
    ) -> Iterator[ChunkResponse]:
        """
        Lazily submits the batch chunk by chunk. Cancellation is honoured between
        chunks, never in the middle of one.
        """
        for chunk in batch.chunks(self.__chunk_size):
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            yield self.submit_chunk(chunk, cancellation)

    def submit_chunk(
        self, chunk: BatchRequest, cancellation: CancellationToken | None = None
    ) -> ChunkResponse:
        bundle = self.__batch_builder.to_bundle(chunk, atomic=self.__atomic)

        t0 = time.perf_counter()
        try:
            payload = self.__api.post_bundle(bundle, cancellation)
        except BundleRejectedError as e:
            logger.error(
                "Chunk at offset %s rejected with status %s: %s",
                chunk.offset,
                e.status_code,
                "; ".join(e.diagnostics),
            )
            return ChunkResponse(
                chunk=chunk,
                rejected=True,
                status_code=e.status_code,
                diagnostics=tuple(e.diagnostics),
            )
        except TransportError as e:
            raise FatalBatchError(
                f"Chunk at offset {chunk.offset} could not be delivered: {e}",
                chunk_offset=chunk.offset,
            ) from e
        except ProtocolError as e:
            raise FatalBatchError(
                f"Chunk at offset {chunk.offset} got an unreadable response: {e}",
                chunk_offset=chunk.offset,
            ) from e

        elapsed = time.perf_counter() - t0
        logger.info(
            "FHIR %s POST offset=%s entries=%s elapsed=%.3fs",
            bundle["type"],
            chunk.offset,
            len(chunk),
            elapsed,
        )
        return ChunkResponse(chunk=chunk, payload=payload)

    def execute_query(
        self, descriptor: QueryDescriptor, cancellation: CancellationToken | None = None
    ) -> BundlePage:
        data = self.__api.search(
            descriptor.resource_type, descriptor.to_params(), cancellation
        )
        return parse_bundle_page(data)

    def fetch_next_page(
        self, token: str, cancellation: CancellationToken | None = None
    ) -> BundlePage:
        data = self.__api.get_page(token, cancellation)
        return parse_bundle_page(data)


def parse_bundle_page(data: Dict[str, Any]) -> BundlePage:
    try:
        bundle = Bundle.model_validate(data)
    except ValidationError as e:
        raise ProtocolError(f"Search response is not a valid Bundle: {e}")

    entries: List[PageEntry] = []
    for entry in bundle.entry or []:
        if not entry.resource or "resourceType" not in entry.resource:
            continue
        entries.append(
            PageEntry(
                resource_type=get_resource_type(entry.resource),
                resource_id=entry.resource.get("id"),
                resource=entry.resource,
                search_mode=entry.search.mode if entry.search else None,
            )
        )

    return BundlePage(entries=tuple(entries), next_token=bundle.next_url(), total=bundle.total)
