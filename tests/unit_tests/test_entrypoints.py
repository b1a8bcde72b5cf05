import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from fhir_etl import application
from fhir_etl.models.report.dto import RunReport
from tests.fake_fhir_server import FakeFhirServer

CSV = (
    "Id,FirstName,LastName,Gender,BirthDate,Phone\n"
    "A,Anna,Smith,female,1980-01-01,0612345678\n"
    "B,Bob,Jones,male,1975-05-12,\n"
)


def _write_config(tmp_path: Path, base_url: str, extra: str = "") -> str:
    path = tmp_path / "app.conf"
    path.write_text(
        f"[app]\nloglevel=error\n\n[fhir]\nbase_url={base_url}\nbackoff=0\n{extra}\n",
        encoding="utf-8",
    )
    return str(path)


def _write_csv(tmp_path: Path) -> str:
    path = tmp_path / "patients.csv"
    path.write_text(CSV, encoding="utf-8")
    return str(path)


def test_main_loads_and_verifies(
    tmp_path: Path, fake_server: FakeFhirServer, capsys: pytest.CaptureFixture[str]
) -> None:
    argv = ["--config", _write_config(tmp_path, fake_server.base_url), "--csv", _write_csv(tmp_path)]

    exit_code = application.main(argv)

    assert exit_code == 0
    report = json.loads(capsys.readouterr().out)
    assert report["created"] == 2
    assert report["verified_count"] == 2
    assert report["exit_code"] == 0
    assert len(fake_server.resources("Patient")) == 2


def test_main_without_verification(
    tmp_path: Path, fake_server: FakeFhirServer, capsys: pytest.CaptureFixture[str]
) -> None:
    argv = [
        "--config", _write_config(tmp_path, fake_server.base_url),
        "--csv", _write_csv(tmp_path),
        "--no-verify",
    ]

    assert application.main(argv) == 0

    assert fake_server.count("GET") == 0
    assert json.loads(capsys.readouterr().out)["verified_count"] is None


def test_main_dry_run_does_not_send(
    tmp_path: Path, fake_server: FakeFhirServer, capsys: pytest.CaptureFixture[str]
) -> None:
    argv = [
        "--config", _write_config(tmp_path, fake_server.base_url, "chunk_size=1"),
        "--csv", _write_csv(tmp_path),
        "--dry-run",
    ]

    assert application.main(argv) == 0

    output = json.loads(capsys.readouterr().out)
    assert len(output["bundles"]) == 2
    assert output["bundles"][0]["type"] == "transaction"
    assert fake_server.requests == []


def test_main_returns_1_when_aborted(
    tmp_path: Path, fake_server: FakeFhirServer, monkeypatch: pytest.MonkeyPatch
) -> None:
    pipeline = MagicMock()
    pipeline.run.return_value = RunReport(records_read=2, aborted=True, abort_reason="down")
    monkeypatch.setattr(application, "get_etl_pipeline", lambda: pipeline)
    argv = ["--config", _write_config(tmp_path, fake_server.base_url), "--csv", _write_csv(tmp_path)]

    assert application.main(argv) == 1


def test_main_returns_2_on_missing_config(tmp_path: Path) -> None:
    argv = ["--config", str(tmp_path / "missing.conf"), "--csv", "patients.csv"]

    assert application.main(argv) == 2


def test_main_returns_2_on_missing_csv(tmp_path: Path) -> None:
    argv = ["--config", _write_config(tmp_path, "http://fhir.test/fhir"), "--csv", str(tmp_path / "missing.csv")]

    assert application.main(argv) == 2


def test_main_returns_2_without_bearer_token(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("FHIR_TOKEN", raising=False)
    argv = [
        "--config", _write_config(tmp_path, "http://fhir.test/fhir", "authentication=bearer"),
        "--csv", _write_csv(tmp_path),
    ]

    assert application.main(argv) == 2
