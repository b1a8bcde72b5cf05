import csv
import logging
from typing import Dict, List

from fhir_etl.exceptions import SourceError

logger = logging.getLogger(__name__)


def read_csv_records(path: str, delimiter: str = ",") -> List[Dict[str, str]]:
    """
    Reads a CSV file with a header row into a list of records keyed by column
    name. A UTF-8 byte order mark is ignored.
    """
    try:
        with open(path, newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f, delimiter=delimiter)
            if reader.fieldnames is None:
                raise SourceError(f"CSV file {path} has no header row")
            records = [
                {k: (v if v is not None else "") for k, v in row.items() if k is not None}
                for row in reader
            ]
    except OSError as e:
        raise SourceError(f"Unable to open CSV file {path}: {e}") from e
    except (csv.Error, UnicodeDecodeError) as e:
        raise SourceError(f"Unable to parse CSV file {path}: {e}") from e

    logger.info("Read %s records from %s", len(records), path)
    return records
