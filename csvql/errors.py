"""
Error kinds for csvql and the lookup-failure observability sink.

These failures leave the core as exceptions:
- SynthesisFailure: the query surface cannot be built (never recovered)
- MetadataError / LoaderError: raised by the load-cycle collaborators
- ConfigError: a configuration value has the wrong shape

LookupFailure is raised by the row source and always recovered by the
executor, the resolver and the in-memory filter engine, which forward
it to a sink and substitute an empty result.
"""
import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class CsvqlError(Exception):
    """Base class for all csvql errors."""
    pass


class LookupFailure(CsvqlError):
    """The row source failed while reading a dataset."""

    def __init__(self, dataset: str, message: Optional[str] = None):
        self.dataset = dataset
        super().__init__(message or f"Lookup failed for dataset '{dataset}'")


class SynthesisFailure(CsvqlError):
    """A dataset's type descriptors could not be built."""

    def __init__(self, dataset: str, message: Optional[str] = None):
        self.dataset = dataset
        super().__init__(message or f"Cannot synthesize schema for dataset '{dataset}'")


class MetadataError(CsvqlError):
    """Metadata definition is missing or malformed."""
    pass


class LoaderError(CsvqlError):
    """A CSV source could not be read."""
    pass


class ConfigError(CsvqlError):
    """A configuration value cannot be used."""
    pass


# A sink receives every recovered LookupFailure exactly once.
ErrorSink = Callable[[LookupFailure], None]


def log_lookup_failure(failure: LookupFailure) -> None:
    """Default sink: log the failure with its cause."""
    logger.warning(
        "Lookup failure on %s: %s",
        failure.dataset,
        failure.__cause__ or failure,
        exc_info=failure,
    )


class FailureRecorder:
    """
    Sink that keeps reported failures in memory.

    Optionally chains to another sink so failures are still logged.

    Example:
        recorder = FailureRecorder(chain=log_lookup_failure)
        executor = QueryExecutor(db, registry, on_error=recorder)
        ...
        assert not recorder.failures
    """

    def __init__(self, chain: Optional[ErrorSink] = None, max_size: int = 100):
        self.failures: List[LookupFailure] = []
        self.chain = chain
        self.max_size = max_size

    def __call__(self, failure: LookupFailure) -> None:
        self.failures.append(failure)
        if len(self.failures) > self.max_size:
            del self.failures[0]
        if self.chain is not None:
            self.chain(failure)

    def __len__(self) -> int:
        return len(self.failures)

    def clear(self) -> None:
        self.failures.clear()
