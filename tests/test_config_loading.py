from pathlib import Path

import pytest
from pydantic import ValidationError

from fhir_etl.config import LogLevel, get_config, reset_config, set_config
from tests.test_config import get_test_config

MINIMAL_INI = """
[app]
loglevel=debug

[fhir]
base_url=http://fhir.test/fhir
authentication=bearer
bearer_token=
timeout=
retries=5
atomic=false
verify_ca=false

[mapping]
profile=
workers=

[etl]
validate_before_load=true
"""


def _write(tmp_path: Path, content: str) -> str:
    path = tmp_path / "app.conf"
    path.write_text(content, encoding="utf-8")
    return str(path)


def test_get_config_reads_ini_with_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FHIR_TOKEN", raising=False)

    config = get_config(_write(tmp_path, MINIMAL_INI))

    assert config.app.loglevel == LogLevel.debug
    assert config.fhir.base_url == "http://fhir.test/fhir"
    assert config.fhir.bearer_token is None
    assert config.fhir.timeout == 30
    assert config.fhir.connect_timeout == 10
    assert config.fhir.retries == 5
    assert config.fhir.atomic is False
    assert config.fhir.verify_ca is False
    assert config.fhir.chunk_size == 50
    assert config.mapping.identifier_system == "http://example.org/test-ids"
    assert config.mapping.tag_code == "SUBSET"
    assert config.mapping.profile is None
    assert config.mapping.workers == 1
    assert config.mapping.family_suffix == " [TEST]"
    assert config.etl.validate_before_load is True
    assert config.etl.verify_after_load is True
    assert config.stats.enabled is False


def test_get_config_takes_token_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FHIR_TOKEN", "from-env")

    config = get_config(_write(tmp_path, MINIMAL_INI))

    assert config.fhir.bearer_token == "from-env"


def test_get_config_is_cached(tmp_path: Path) -> None:
    first = get_config(_write(tmp_path, MINIMAL_INI))

    assert get_config("/does/not/matter.conf") is first

    reset_config()
    with pytest.raises(FileNotFoundError):
        get_config(str(tmp_path / "missing.conf"))


def test_get_config_requires_fhir_section(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        get_config(_write(tmp_path, "[app]\nloglevel=info\n"))


def test_get_config_rejects_unknown_authentication(tmp_path: Path) -> None:
    with pytest.raises(ValidationError):
        get_config(_write(tmp_path, "[fhir]\nbase_url=http://x\nauthentication=oauth\n"))


def test_set_config() -> None:
    config = get_test_config()

    set_config(config)

    assert get_config() is config
