import argparse
import json
import logging
import signal
import sys
from typing import Any, List, Sequence

from pydantic import ValidationError

from fhir_etl.config import Config, get_config
from fhir_etl.container import (
    get_batch_builder,
    get_etl_pipeline,
    get_patient_mapper,
    setup_container,
)
from fhir_etl.exceptions import SourceError
from fhir_etl.services.cancellation import CancellationToken
from fhir_etl.sources.csv_source import read_csv_records
from fhir_etl.stats import setup_stats

logger = logging.getLogger(__name__)

EXIT_CONFIG_ERROR = 2


def setup_logging(config: Config) -> None:
    loglevel = logging.getLevelName(config.app.loglevel.value.upper())

    if isinstance(loglevel, str):
        raise ValueError(f"Invalid loglevel {loglevel.upper()}")
    logging.basicConfig(
        level=loglevel,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="fhir-etl",
        description="Load patient records from a CSV file into a FHIR server using conditional upserts, then verify the load.",
    )
    p.add_argument("--config", default=None, help="Path to the INI configuration file (default: app.conf or app.<APP_ENV>.conf).")
    p.add_argument("--csv", required=True, help="CSV file with one patient per row.")
    p.add_argument("--delimiter", default=",", help="CSV field delimiter.")
    p.add_argument("--no-verify", action="store_true", help="Skip the verification query after loading.")
    p.add_argument("--validate", action="store_true", help="Validate every resource before loading.")
    p.add_argument("--dry-run", action="store_true", help="Don't send anything; print the Bundles that would be submitted.")
    return p


def _dry_run(records: Sequence[Any], config: Config) -> int:
    mapped = get_patient_mapper().map_all(records, workers=config.mapping.workers)
    builder = get_batch_builder()
    batch = builder.build(mapped.resources)
    bundles = [
        builder.to_bundle(chunk, atomic=config.fhir.atomic)
        for chunk in batch.chunks(config.fhir.chunk_size)
    ]
    print(
        json.dumps(
            {
                "records_read": len(records),
                "mapping_errors": [str(e) for e in mapped.errors],
                "bundles": bundles,
            },
            indent=2,
        )
    )
    return 0


def main(argv: List[str] | None = None) -> int:
    args = _build_arg_parser().parse_args(argv)

    try:
        config = get_config(args.config)
    except (FileNotFoundError, ValidationError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    if args.no_verify:
        config.etl.verify_after_load = False
    if args.validate:
        config.etl.validate_before_load = True

    setup_logging(config)
    setup_stats(config.stats)
    setup_container()

    try:
        records = read_csv_records(args.csv, delimiter=args.delimiter)
    except SourceError as e:
        logger.error(str(e))
        return EXIT_CONFIG_ERROR

    if args.dry_run:
        return _dry_run(records, config)

    try:
        pipeline = get_etl_pipeline()
    except ValueError as e:
        logger.error("Unable to set up the pipeline: %s", e)
        return EXIT_CONFIG_ERROR

    cancellation = CancellationToken()
    previous = signal.signal(signal.SIGINT, lambda *_: cancellation.cancel())
    try:
        report = pipeline.run(records, cancellation)
    finally:
        signal.signal(signal.SIGINT, previous)

    print(report.model_dump_json(indent=2))
    return report.exit_code
