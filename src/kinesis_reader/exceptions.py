# src/kinesis_reader/exceptions.py
"""Custom exceptions for the kinesis-reader application.

Every error raised by the application derives from `KinesisReaderError` and
carries a `FailureKind` tag, so callers can branch on the kind of failure
instead of probing for attributes.
"""

from enum import Enum
from typing import Dict, List, Optional, Sequence


class FailureKind(Enum):
    """The high-level category of a failure."""

    CALLER = "caller"
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non-retryable"
    EXHAUSTED_RETRIES = "exhausted-retries"


class RemoteErrorKind(Enum):
    """The specific condition reported by the Kinesis service."""

    EXPIRED_ITERATOR = "ExpiredIteratorException"
    THROUGHPUT_EXCEEDED = "ProvisionedThroughputExceededException"
    RESOURCE_NOT_FOUND = "ResourceNotFoundException"
    INVALID_ARGUMENT = "InvalidArgumentException"
    TRANSIENT = "Transient"
    OTHER = "Other"


class KinesisReaderError(Exception):
    """Base exception for all application-specific errors."""

    kind: FailureKind = FailureKind.NON_RETRYABLE
    retryable: bool = False


class ConfigError(KinesisReaderError):
    """Raised for configuration-related issues."""

    kind = FailureKind.CALLER


class CallerError(KinesisReaderError):
    """Raised when the tool is invoked in a way that can never succeed."""

    kind = FailureKind.CALLER


class CheckpointError(KinesisReaderError):
    """Raised when the checkpoint file cannot be parsed."""

    kind = FailureKind.CALLER


class RemoteError(KinesisReaderError):
    """
    An error reported by (or while talking to) the Kinesis service.

    Attributes:
        remote_kind (RemoteErrorKind): The condition the service reported.
        code (str): The raw error code, e.g. `ExpiredIteratorException`.
        retryable (bool): Whether the Retry Executor may try again.
    """

    def __init__(
        self,
        message: str,
        remote_kind: RemoteErrorKind = RemoteErrorKind.OTHER,
        code: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.remote_kind: RemoteErrorKind = remote_kind
        self.code: str = code or remote_kind.value
        self.retryable = retryable

    @property
    def kind(self) -> FailureKind:  # type: ignore[override]
        return FailureKind.RETRYABLE if self.retryable else FailureKind.NON_RETRYABLE


class ExpiredIteratorError(RemoteError):
    """The shard iterator used for a fetch has expired."""

    def __init__(self, message: str = "Shard iterator has expired.") -> None:
        super().__init__(
            message, RemoteErrorKind.EXPIRED_ITERATOR, retryable=True
        )


class ThroughputExceededError(RemoteError):
    """The shard's read throughput limit was exceeded."""

    def __init__(self, message: str = "Provisioned throughput exceeded.") -> None:
        super().__init__(
            message, RemoteErrorKind.THROUGHPUT_EXCEEDED, retryable=True
        )


class RetryError(KinesisReaderError):
    """
    Base class for the two structured failure reports of the Retry Executor.

    Attributes:
        last_error (BaseException): The error raised by the final attempt.
        previous_errors (List[BaseException]): Errors from every earlier
            attempt, oldest first.
    """

    def __init__(
        self,
        message: str,
        last_error: BaseException,
        previous_errors: Sequence[BaseException],
    ) -> None:
        super().__init__(message)
        self.last_error: BaseException = last_error
        self.previous_errors: List[BaseException] = list(previous_errors)

    @property
    def attempts(self) -> List[BaseException]:
        """All attempt errors in the order they occurred."""
        return [*self.previous_errors, self.last_error]

    def root_cause(self) -> BaseException:
        """
        Follows nested failure reports down to the innermost original error.

        Returns:
            BaseException: The first error that is not itself a `RetryError`.
        """
        error: BaseException = self.last_error
        while isinstance(error, RetryError):
            error = error.last_error
        return error


class NonRetryableError(RetryError):
    """An attempt failed with an error that must not be retried."""

    kind = FailureKind.NON_RETRYABLE

    def __init__(
        self, last_error: BaseException, previous_errors: Sequence[BaseException]
    ) -> None:
        super().__init__(
            f"Caught a non-retryable error: "
            f"{type(last_error).__name__}: {last_error}",
            last_error,
            previous_errors,
        )


class OutOfRetriesError(RetryError):
    """Every attempt failed with a retryable error and the budget is spent."""

    kind = FailureKind.EXHAUSTED_RETRIES

    def __init__(
        self, last_error: BaseException, previous_errors: Sequence[BaseException]
    ) -> None:
        all_errors: List[BaseException] = [*previous_errors, last_error]
        names: List[str] = list(dict.fromkeys(type(e).__name__ for e in all_errors))
        super().__init__(
            f"Ran out of retries after {len(all_errors)} error(s): "
            f"{', '.join(names)}",
            last_error,
            previous_errors,
        )


class ShardReadError(KinesisReaderError):
    """
    Raised at the end of a run when one or more shards failed.

    Attributes:
        failures (Dict[str, BaseException]): The error for each failed shard.
    """

    def __init__(self, failures: Dict[str, BaseException]) -> None:
        summary: str = "; ".join(
            f"{shard_id}: {type(error).__name__}: {error}"
            for shard_id, error in failures.items()
        )
        super().__init__(f"Failed to read {len(failures)} shard(s): {summary}")
        self.failures: Dict[str, BaseException] = dict(failures)
