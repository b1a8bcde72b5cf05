from fhir_etl.config import (
    Config,
    ConfigApp,
    ConfigEtl,
    ConfigFhir,
    ConfigMapping,
    ConfigStats,
    LogLevel,
)
from tests.fake_fhir_server import BASE_URL

ID_SYSTEM = "http://example.org/test-ids"


def get_test_config() -> Config:
    return Config(
        app=ConfigApp(loglevel=LogLevel.error),
        fhir=ConfigFhir(
            base_url=BASE_URL,
            authentication="off",
            timeout=1,
            connect_timeout=1,
            retries=3,
            backoff=0,
            chunk_size=50,
            atomic=True,
        ),
        mapping=ConfigMapping(),
        etl=ConfigEtl(validate_before_load=False, verify_after_load=True),
        stats=ConfigStats(enabled=False, host=None, port=None, module_name="fhir_etl"),
    )
