class EtlError(Exception):
    """
    Base class for all errors raised by the ETL pipeline.
    """


class MappingError(EtlError):
    """
    A raw record could not be mapped because a required field is missing or the
    identifier was already used by an earlier record. The record is skipped.
    """

    def __init__(self, message: str, field: str, source_index: int = 0) -> None:
        super().__init__(message)
        self.field = field
        self.source_index = source_index


class SourceError(EtlError):
    """
    The tabular source could not be opened or parsed. The pipeline does not start.
    """


class TransportError(EtlError):
    """
    Network failure, timeout or 5xx response that persisted after all retries.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(EtlError):
    """
    The server answered with something that is not a readable FHIR Bundle.
    """


class BundleRejectedError(EtlError):
    """
    The server refused a whole bundle with a 4xx status. Not retried.
    """

    def __init__(
        self, message: str, status_code: int, diagnostics: list[str] | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.diagnostics = diagnostics or []


class FatalBatchError(EtlError):
    """
    A chunk could not be delivered. Aborts the run, earlier outcomes are kept.
    """

    def __init__(self, message: str, chunk_offset: int) -> None:
        super().__init__(message)
        self.chunk_offset = chunk_offset


class QueryBuildError(EtlError, ValueError):
    """
    The query descriptor is structurally invalid. Raised before any network call.
    """


class PipelineCancelled(EtlError):
    pass
