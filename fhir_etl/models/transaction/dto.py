from enum import Enum
from typing import Iterator, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field
from yarl import URL

from fhir_etl.models.patient.dto import CanonicalPatient
from fhir_etl.services.fhir.utils import token_param


class ConditionalKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    system: str
    value: str

    def search_url(self, resource_type: str) -> str:
        # query values are percent-encoded, so "&" and "#" stay inside the identifier
        return str(URL(resource_type).with_query({"identifier": token_param(self.system, self.value)}))


class UpsertOperation(BaseModel):
    model_config = ConfigDict(frozen=True)

    conditional_key: ConditionalKey
    payload: CanonicalPatient
    method: Literal["PUT"] = "PUT"
    resource_type: str = "Patient"

    @property
    def request_url(self) -> str:
        return self.conditional_key.search_url(self.resource_type)


class BatchRequest(BaseModel):
    """
    Ordered set of upserts submitted as one unit. `offset` is the position of the
    first operation in the complete run, so chunk outcomes keep global indexes.
    """
    model_config = ConfigDict(frozen=True)

    operations: Tuple[UpsertOperation, ...] = Field(default_factory=tuple)
    offset: int = 0

    def __len__(self) -> int:
        return len(self.operations)

    def chunks(self, size: int) -> Iterator["BatchRequest"]:
        if size <= 0:
            yield self
            return
        for i in range(0, len(self.operations), size):
            yield BatchRequest(
                operations=self.operations[i : i + size], offset=self.offset + i
            )


class EntryStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


class EntryOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation_index: int
    identifier: str
    status: EntryStatus
    status_code: int | None = None
    server_id: str | None = None
    version_id: str | None = None
    diagnostics: Tuple[str, ...] = Field(default_factory=tuple)


class BatchOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    entries: Tuple[EntryOutcome, ...] = Field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.entries)

    def _count(self, status: EntryStatus) -> int:
        return sum(1 for e in self.entries if e.status == status)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def created(self) -> int:
        return self._count(EntryStatus.CREATED)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def updated(self) -> int:
        return self._count(EntryStatus.UPDATED)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> int:
        return self._count(EntryStatus.FAILED)

    def failures(self) -> list[EntryOutcome]:
        return [e for e in self.entries if e.status == EntryStatus.FAILED]

    def merge(self, other: "BatchOutcome") -> "BatchOutcome":
        return BatchOutcome(entries=self.entries + other.entries)


class ChunkResponse(BaseModel):
    """
    What the server returned for one chunk: either a response Bundle or a
    top level rejection of the whole chunk.
    """
    model_config = ConfigDict(frozen=True)

    chunk: BatchRequest
    payload: dict | None = None
    rejected: bool = False
    status_code: int | None = None
    diagnostics: Tuple[str, ...] = Field(default_factory=tuple)
