from threading import Event

from fhir_etl.exceptions import PipelineCancelled


class CancellationToken:
    """
    Cooperative cancellation flag. Checked only between network calls, a request
    that is already in flight always completes.
    """

    def __init__(self) -> None:
        self.__event = Event()

    def cancel(self) -> None:
        self.__event.set()

    @property
    def cancelled(self) -> bool:
        return self.__event.is_set()

    def raise_if_cancelled(self) -> None:
        if self.__event.is_set():
            raise PipelineCancelled("Pipeline run was cancelled")

    def wait(self, timeout: float) -> bool:
        """
        Blocks for at most `timeout` seconds, returns True as soon as the token is cancelled.
        """
        return self.__event.wait(timeout)
