"""
This module implements custom exceptions
"""

# Standard
from typing import Iterable, List, Optional

## Base Error ##################################################################


class OdlmError(Exception):
    """Base class for all odlm exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should be treated as
        permanent rather than resolving on a later reconcile
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class OdlmFatalError(OdlmError):
    """An OdlmFatalError is one that indicates an unexpected, and likely
    unrecoverable, failure during a reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(OdlmFatalError):
    """Exception caused by invalid user-provided configuration"""


class ClusterError(OdlmFatalError):
    """Exception caused when a cluster operation fails in an unexpected way"""


class MergeError(OdlmFatalError):
    """Exception caused by a malformed template or override document. Retrying
    the same merge will not succeed until the input changes.
    """


## Expected Errors #############################################################


class OdlmExpectedError(OdlmError):
    """An OdlmExpectedError is one that indicates an expected failure condition
    that is expected to resolve in a subsequent reconciliation.
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class PreconditionError(OdlmExpectedError):
    """Exception caused when an expected precondition is not met"""


class PollTimeoutError(OdlmExpectedError):
    """Exception caused when a deleted resource is not observed absent within
    the configured poll bound
    """


## Aggregation #################################################################


class MultiError(OdlmError):
    """Aggregate of the per-item failures collected over one reconcile"""

    def __init__(self, errors: Iterable[Exception]):
        self.errors: List[Exception] = list(errors)
        assert self.errors, "Cannot construct an empty MultiError"
        super().__init__(
            message="; ".join(str(err) for err in self.errors),
            is_fatal_error=any(
                getattr(err, "is_fatal_error", True) for err in self.errors
            ),
        )

    @classmethod
    def from_errors(cls, errors: List[Exception]) -> Optional[Exception]:
        """Build an aggregate only when there is something to report. A single
        error is returned as is.
        """
        if not errors:
            return None
        if len(errors) == 1:
            return errors[0]
        return cls(errors)


## Assertions ##################################################################


def assert_precondition(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PreconditionError. This
    should be used when a dependency has not yet reached the state needed to
    continue.
    """
    if not condition:
        raise PreconditionError(message)


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when the content of a user-managed resource is invalid.
    """
    if not condition:
        raise ConfigError(message)


def assert_cluster(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ClusterError. This should
    be used when an operation in the cluster (such as fetching an existing
    secret) must succeed.
    """
    if not condition:
        raise ClusterError(message)
