import logging
from typing import Iterable, Iterator, Set

from fhir_etl.models.query.dto import (
    BundlePage,
    EntryRole,
    PageEntry,
    QueryDescriptor,
    ReconciledEntry,
    ReconciledResult,
)
from fhir_etl.services.cancellation import CancellationToken
from fhir_etl.services.fhir.utils import iter_reference_strings, relative_reference
from fhir_etl.services.load.remote_store_client import RemoteStoreClient

logger = logging.getLogger(__name__)


class BundleReconciler:
    """
    Walks a paged search result and tags every entry with the role it plays in
    the query: primary match, forward include or reverse include.
    """

    def __init__(
        self,
        store_client: RemoteStoreClient,
        cancellation: CancellationToken | None = None,
    ) -> None:
        self.__store_client = store_client
        self.__cancellation = cancellation

    def pages(
        self, descriptor: QueryDescriptor, cancellation: CancellationToken | None = None
    ) -> Iterator[BundlePage]:
        """
        Lazily yields result pages. The next page is only requested once the
        caller asks for it, and never while another request is in flight.
        """
        cancellation = cancellation or self.__cancellation
        _check_cancelled(cancellation)
        page = self.__store_client.execute_query(descriptor, cancellation)
        yield page

        while page.next_token:
            _check_cancelled(cancellation)
            page = self.__store_client.fetch_next_page(page.next_token, cancellation)
            yield page

    def execute(
        self, descriptor: QueryDescriptor, cancellation: CancellationToken | None = None
    ) -> Iterator[ReconciledEntry]:
        reverse_types = {i.resource_type for i in descriptor.reverse_includes}
        primary_refs: Set[str] = set()
        referenced_by_primary: Set[str] = set()

        for page in self.pages(descriptor, cancellation):
            # Primaries of the whole page are known before any include is tagged
            for entry in page.entries:
                if _is_primary(entry, descriptor.resource_type):
                    if entry.resource_id:
                        primary_refs.add(f"{entry.resource_type}/{entry.resource_id}")
                    referenced_by_primary.update(_references(entry))

            for entry in page.entries:
                if entry.search_mode == "outcome":
                    logger.warning(
                        "Skipping %s entry with search mode 'outcome' in query result",
                        entry.resource_type,
                    )
                    continue

                if _is_primary(entry, descriptor.resource_type):
                    role = EntryRole.PRIMARY
                else:
                    role = _include_role(
                        entry, reverse_types, primary_refs, referenced_by_primary
                    )

                yield ReconciledEntry(
                    resource_type=entry.resource_type,
                    resource_id=entry.resource_id,
                    role=role,
                    resource=entry.resource,
                )

    @staticmethod
    def partition(entries: Iterable[ReconciledEntry]) -> ReconciledResult:
        result = ReconciledResult()
        for entry in entries:
            match entry.role:
                case EntryRole.PRIMARY:
                    result.primary.append(entry)
                case EntryRole.INCLUDED_FORWARD:
                    result.included_forward.append(entry)
                case EntryRole.INCLUDED_REVERSE:
                    result.included_reverse.append(entry)
            result.by_type.setdefault(entry.resource_type, []).append(entry)
        return result


def _check_cancelled(cancellation: CancellationToken | None) -> None:
    if cancellation is not None:
        cancellation.raise_if_cancelled()


def _is_primary(entry: PageEntry, base_type: str) -> bool:
    if entry.search_mode == "match":
        return True
    return entry.search_mode is None and entry.resource_type == base_type


def _references(entry: PageEntry) -> Set[str]:
    refs = set()
    for reference in iter_reference_strings(entry.resource):
        relative = relative_reference(reference)
        if relative is not None:
            refs.add(relative)
    return refs


def _include_role(
    entry: PageEntry,
    reverse_types: Set[str],
    primary_refs: Set[str],
    referenced_by_primary: Set[str],
) -> EntryRole:
    if entry.resource_type in reverse_types and _references(entry) & primary_refs:
        return EntryRole.INCLUDED_REVERSE

    if entry.resource_id and f"{entry.resource_type}/{entry.resource_id}" in referenced_by_primary:
        return EntryRole.INCLUDED_FORWARD

    if entry.resource_type in reverse_types:
        return EntryRole.INCLUDED_REVERSE
    return EntryRole.INCLUDED_FORWARD
