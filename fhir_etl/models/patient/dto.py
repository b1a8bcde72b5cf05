from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fhir_etl.exceptions import MappingError
from fhir_etl.models.fhir.r4.types import Coding

RawRecord = Mapping[str, str]


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"


class ColumnMapping(BaseModel):
    """
    Names of the source columns the mapper reads from a raw record.
    """
    model_config = ConfigDict(frozen=True)

    identifier: str = "Id"
    first_name: str = "FirstName"
    last_name: str = "LastName"
    gender: str = "Gender"
    birth_date: str = "BirthDate"
    phone: str = "Phone"


class CanonicalPatient(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    family: str
    given: str
    gender: Gender = Gender.UNKNOWN
    birth_date: str
    phone: str | None = None
    tags: Tuple[Coding, ...] = Field(default_factory=tuple)
    profile: str | None = None
    source_index: int = 0

    @field_validator("identifier")
    def validate_identifier(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("identifier cannot be empty")
        return v


@dataclass(frozen=True)
class MappingResult:
    resources: Tuple[CanonicalPatient, ...] = ()
    errors: Tuple[MappingError, ...] = ()
