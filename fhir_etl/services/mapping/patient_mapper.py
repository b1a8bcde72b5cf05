from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
import logging
import re
from typing import List, Sequence

from fhir_etl.exceptions import MappingError
from fhir_etl.models.fhir.r4.types import Coding
from fhir_etl.models.patient.dto import (
    CanonicalPatient,
    ColumnMapping,
    Gender,
    MappingResult,
    RawRecord,
)

logger = logging.getLogger(__name__)

_GENDER_ALIASES = {
    "male": Gender.MALE,
    "m": Gender.MALE,
    "man": Gender.MALE,
    "female": Gender.FEMALE,
    "f": Gender.FEMALE,
    "woman": Gender.FEMALE,
    "vrouw": Gender.FEMALE,
    "v": Gender.FEMALE,
}


# Day first, as in the legacy exports
_DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%d.%m.%Y", "%Y/%m/%d", "%Y%m%d")
_PARTIAL_DATE = re.compile(r"^\d{4}(-(0[1-9]|1[0-2]))?$")


def normalize_birth_date(value: str) -> str:
    """
    Returns the date as YYYY-MM-DD when it matches one of the known layouts. A
    year or year-month is already a valid FHIR date and is kept. Anything else is
    returned unchanged and left to validation or the server.
    """
    value = value.strip()
    if _PARTIAL_DATE.match(value):
        return value

    candidate = value.split("T", 1)[0] if re.match(r"^\d{4}-\d{2}-\d{2}T", value) else value
    for fmt in _DATE_FORMATS:
        if fmt == "%Y%m%d" and len(candidate) != 8:
            continue
        try:
            return datetime.strptime(candidate, fmt).date().isoformat()
        except ValueError:
            continue

    logger.debug("Unrecognised birth date %r is passed through as is", value)
    return value


def coerce_gender(value: str | None) -> Gender:
    """
    Maps a free text gender onto the closed enum. Never fails, anything
    unrecognised becomes unknown.
    """
    if value is None:
        return Gender.UNKNOWN
    return _GENDER_ALIASES.get(str(value).strip().lower(), Gender.UNKNOWN)


class PatientMapper:
    """
    Maps raw tabular records onto canonical patients. Pure, no I/O.
    """

    def __init__(
        self,
        tag: Coding,
        columns: ColumnMapping | None = None,
        decorate_names: bool = True,
        given_suffix: str = "-Test",
        family_suffix: str = " [TEST]",
        profile: str | None = None,
    ) -> None:
        self.__tag = tag
        self.__columns = columns or ColumnMapping()
        self.__decorate_names = decorate_names
        self.__given_suffix = given_suffix
        self.__family_suffix = family_suffix
        self.__profile = profile

    def map(self, record: RawRecord, index: int = 0) -> CanonicalPatient:
        cols = self.__columns
        identifier = self.__required(record, cols.identifier, "identifier", index)
        given = self.__required(record, cols.first_name, "first name", index)
        family = self.__required(record, cols.last_name, "last name", index)
        birth_date = self.__required(record, cols.birth_date, "birth date", index)

        if self.__decorate_names:
            given = f"{given}{self.__given_suffix}"
            family = f"{family}{self.__family_suffix}"

        return CanonicalPatient(
            identifier=identifier,
            family=family,
            given=given,
            gender=coerce_gender(_lookup(record, cols.gender)),
            birth_date=normalize_birth_date(birth_date),
            phone=_lookup(record, cols.phone) or None,
            tags=(self.__tag,),
            profile=self.__profile,
            source_index=index,
        )

    def map_all(self, records: Sequence[RawRecord], workers: int = 1) -> MappingResult:
        """
        Maps every record, keeping input order. Records that fail are collected
        as errors instead of stopping the run, as are records that repeat an
        identifier that was already accepted.
        """
        indexed = list(enumerate(records))
        if workers <= 1:
            mapped = [self.__try_map(i, r) for i, r in indexed]
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                mapped = list(executor.map(lambda ir: self.__try_map(*ir), indexed))

        resources: List[CanonicalPatient] = []
        errors: List[MappingError] = []
        seen: set[str] = set()
        for item in mapped:
            if isinstance(item, MappingError):
                errors.append(item)
                continue
            if item.identifier in seen:
                err = MappingError(
                    f"Record {item.source_index}: duplicate identifier '{item.identifier}'",
                    field="identifier",
                    source_index=item.source_index,
                )
                logger.warning(str(err))
                errors.append(err)
                continue
            seen.add(item.identifier)
            resources.append(item)

        return MappingResult(resources=tuple(resources), errors=tuple(errors))

    def __try_map(self, index: int, record: RawRecord) -> CanonicalPatient | MappingError:
        try:
            return self.map(record, index)
        except MappingError as e:
            logger.warning(str(e))
            return e

    @staticmethod
    def __required(record: RawRecord, column: str, field: str, index: int) -> str:
        value = _lookup(record, column)
        if not value:
            raise MappingError(
                f"Record {index}: required field '{field}' ({column}) is missing",
                field=field,
                source_index=index,
            )
        return value


def _lookup(record: RawRecord, column: str) -> str:
    """
    Returns the stripped value of a column, tolerating whitespace around header names.
    """
    value = record.get(column)
    if value is None:
        for key, v in record.items():
            if key is not None and key.strip() == column:
                value = v
                break
    return "" if value is None else str(value).strip()
