from enum import Enum
from typing import Annotated, Any, FrozenSet, List, Literal, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class SearchFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    value: str
    modifier: str | None = None

    @property
    def is_chained(self) -> bool:
        return "." in self.path

    def param(self) -> tuple[str, str]:
        key = f"{self.path}:{self.modifier}" if self.modifier else self.path
        return key, self.value


class ForwardInclude(BaseModel):
    """
    Also fetch the resource referenced by `search_param` of each primary result
    (`_include=<source_type>:<search_param>[:<target_type>]`).
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["forward"] = "forward"
    source_type: str
    search_param: str
    target_type: str | None = None

    def param(self) -> tuple[str, str]:
        value = f"{self.source_type}:{self.search_param}"
        if self.target_type:
            value = f"{value}:{self.target_type}"
        return "_include", value


class ReverseInclude(BaseModel):
    """
    Also fetch resources of `resource_type` that point at a primary result
    through `search_param` (`_revinclude=<resource_type>:<search_param>`).
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["reverse"] = "reverse"
    resource_type: str
    search_param: str

    def param(self) -> tuple[str, str]:
        return "_revinclude", f"{self.resource_type}:{self.search_param}"


Include = Annotated[Union[ForwardInclude, ReverseInclude], Field(discriminator="kind")]


class SortDirection(str, Enum):
    ASCENDING = "asc"
    DESCENDING = "desc"


class SortKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    direction: SortDirection = SortDirection.ASCENDING

    def param(self) -> tuple[str, str]:
        prefix = "-" if self.direction == SortDirection.DESCENDING else ""
        return "_sort", f"{prefix}{self.field}"


class QueryDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_type: str
    filters: Tuple[SearchFilter, ...] = Field(default_factory=tuple)
    includes: FrozenSet[Include] = Field(default_factory=frozenset)
    sort: SortKey | None = None
    limit: int | None = None

    @property
    def forward_includes(self) -> FrozenSet[ForwardInclude]:
        return frozenset(i for i in self.includes if isinstance(i, ForwardInclude))

    @property
    def reverse_includes(self) -> FrozenSet[ReverseInclude]:
        return frozenset(i for i in self.includes if isinstance(i, ReverseInclude))

    def to_params(self) -> List[tuple[str, str]]:
        """
        Renders the descriptor as ordered query parameters. Filters keep their
        declaration order, includes are sorted so the result does not depend on
        the order in which they were declared.
        """
        params = [f.param() for f in self.filters]
        params.extend(sorted(i.param() for i in self.includes))
        if self.sort is not None:
            params.append(self.sort.param())
        if self.limit is not None:
            params.append(("_count", str(self.limit)))
        return params


class QueryConfiguration(BaseModel):
    """
    Declarative input for QueryBuilder.from_configuration.
    """
    resource_type: str
    filters: List[SearchFilter] = Field(default_factory=list)
    includes: List[Include] = Field(default_factory=list)
    sort: SortKey | None = None
    limit: int | None = None


class EntryRole(str, Enum):
    PRIMARY = "primary"
    INCLUDED_FORWARD = "included_forward"
    INCLUDED_REVERSE = "included_reverse"


class PageEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_type: str
    resource_id: str | None
    resource: dict[str, Any]
    search_mode: str | None = None


class BundlePage(BaseModel):
    model_config = ConfigDict(frozen=True)

    entries: Tuple[PageEntry, ...] = Field(default_factory=tuple)
    # opaque continuation: the absolute url of the next link
    next_token: str | None = None
    total: int | None = None


class ReconciledEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_type: str
    resource_id: str | None
    role: EntryRole
    resource: dict[str, Any]


class ReconciledResult(BaseModel):
    primary: List[ReconciledEntry] = Field(default_factory=list)
    included_forward: List[ReconciledEntry] = Field(default_factory=list)
    included_reverse: List[ReconciledEntry] = Field(default_factory=list)
    by_type: dict[str, List[ReconciledEntry]] = Field(default_factory=dict)
