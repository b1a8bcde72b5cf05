from typing import List, Literal

from pydantic import BaseModel, Field, computed_field


class FailureDetail(BaseModel):
    source_index: int | None = None
    identifier: str | None = None
    stage: Literal["mapping", "validation", "load"]
    status_code: int | None = None
    diagnostics: List[str] = Field(default_factory=list)


class VerificationDiscrepancy(BaseModel):
    identifier: str | None = None
    message: str


class VerificationResult(BaseModel):
    expected_count: int
    verified_count: int
    identifiers: List[str] = Field(default_factory=list)
    discrepancies: List[VerificationDiscrepancy] = Field(default_factory=list)


class RunReport(BaseModel):
    records_read: int = 0
    mapping_errors: int = 0
    validation_errors: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    failures: List[FailureDetail] = Field(default_factory=list)
    verified_count: int | None = None
    verification_discrepancies: List[VerificationDiscrepancy] = Field(
        default_factory=list
    )
    aborted: bool = False
    abort_reason: str | None = None
    cancelled: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def exit_code(self) -> int:
        return 1 if self.aborted else 0
