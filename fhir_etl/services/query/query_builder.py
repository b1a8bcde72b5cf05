import re
from typing import List, Set

from fhir_etl.exceptions import QueryBuildError
from fhir_etl.models.query.dto import (
    ForwardInclude,
    Include,
    QueryConfiguration,
    QueryDescriptor,
    ReverseInclude,
    SearchFilter,
    SortDirection,
    SortKey,
)

_RESOURCE_TYPE = re.compile(r"^[A-Z][A-Za-z]+$")


def _require_text(value: object, what: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise QueryBuildError(f"{what} must be a non-empty string")
    return value.strip()


def _require_resource_type(value: object, what: str) -> str:
    text = _require_text(value, what)
    if not _RESOURCE_TYPE.match(text):
        raise QueryBuildError(f"{what} '{text}' is not a valid resource type")
    return text


def _require_path(value: object, what: str) -> str:
    """
    A search path is one or more dot separated segments (chained parameters), none
    of which may be empty: "subject", "subject:Patient.name".
    """
    path = _require_text(value, what)
    if any(not segment.strip() for segment in path.split(".")):
        raise QueryBuildError(f"{what} '{path}' contains an empty chain segment")
    return path


class QueryBuilder:
    """
    Fluent builder for search queries. All validation happens here, so a
    descriptor that comes out of build() can be sent as is.

        QueryBuilder("Encounter")
            .where("participant.individual.name", "Smith", modifier="contains")
            .include("patient")
            .revinclude("Observation", "patient")
            .build()
    """

    def __init__(self, resource_type: str) -> None:
        self.__resource_type = _require_resource_type(resource_type, "resource type")
        self.__filters: List[SearchFilter] = []
        self.__includes: Set[Include] = set()
        self.__sort: SortKey | None = None
        self.__limit: int | None = None

    def where(self, path: str, value: str, modifier: str | None = None) -> "QueryBuilder":
        path = _require_path(path, "filter path")
        if modifier is not None:
            modifier = _require_text(modifier, "filter modifier")
        if value is None:
            raise QueryBuildError(f"filter '{path}' has no value")
        self.__filters.append(SearchFilter(path=path, value=str(value), modifier=modifier))
        return self

    def tagged(self, system: str | None, code: str) -> "QueryBuilder":
        code = _require_text(code, "tag code")
        value = f"{system}|{code}" if system else code
        return self.where("_tag", value)

    def include(
        self,
        search_param: str,
        source_type: str | None = None,
        target_type: str | None = None,
    ) -> "QueryBuilder":
        self.__includes.add(
            ForwardInclude(
                source_type=_require_resource_type(
                    source_type or self.__resource_type, "include source type"
                ),
                search_param=_require_path(search_param, "include reference path"),
                target_type=(
                    _require_resource_type(target_type, "include target type")
                    if target_type is not None
                    else None
                ),
            )
        )
        return self

    def revinclude(self, resource_type: str, search_param: str) -> "QueryBuilder":
        self.__includes.add(
            ReverseInclude(
                resource_type=_require_resource_type(resource_type, "revinclude type"),
                search_param=_require_path(search_param, "revinclude reference path"),
            )
        )
        return self

    def sort_by(self, field: str, descending: bool = False) -> "QueryBuilder":
        self.__sort = SortKey(
            field=_require_path(field, "sort field"),
            direction=SortDirection.DESCENDING if descending else SortDirection.ASCENDING,
        )
        return self

    def limit(self, count: int) -> "QueryBuilder":
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise QueryBuildError(f"limit must be a positive integer, got {count!r}")
        self.__limit = count
        return self

    def build(self) -> QueryDescriptor:
        return QueryDescriptor(
            resource_type=self.__resource_type,
            filters=tuple(self.__filters),
            includes=frozenset(self.__includes),
            sort=self.__sort,
            limit=self.__limit,
        )

    @classmethod
    def from_configuration(cls, configuration: QueryConfiguration) -> QueryDescriptor:
        builder = cls(configuration.resource_type)
        for f in configuration.filters:
            builder.where(f.path, f.value, modifier=f.modifier)
        for inc in configuration.includes:
            if isinstance(inc, ForwardInclude):
                builder.include(inc.search_param, inc.source_type, inc.target_type)
            else:
                builder.revinclude(inc.resource_type, inc.search_param)
        if configuration.sort is not None:
            builder.sort_by(
                configuration.sort.field,
                descending=configuration.sort.direction == SortDirection.DESCENDING,
            )
        if configuration.limit is not None:
            builder.limit(configuration.limit)
        return builder.build()


def build_query(configuration: QueryConfiguration) -> QueryDescriptor:
    return QueryBuilder.from_configuration(configuration)
