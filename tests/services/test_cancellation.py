import pytest

from fhir_etl.exceptions import PipelineCancelled
from fhir_etl.services.cancellation import CancellationToken


def test_token_starts_uncancelled() -> None:
    token = CancellationToken()

    assert not token.cancelled
    assert token.wait(0) is False
    token.raise_if_cancelled()


def test_cancelled_token_wakes_waiters_and_raises() -> None:
    token = CancellationToken()
    token.cancel()

    assert token.cancelled
    assert token.wait(60) is True
    with pytest.raises(PipelineCancelled):
        token.raise_if_cancelled()
