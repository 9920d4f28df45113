"""Exceptions raised by the comparison framework."""


class CompareError(Exception):
    """Base class for all comparison errors."""


class InvalidConfigurationError(CompareError, ValueError):
    """Settings or inputs are empty, unknown or out of range."""


class ConfigurationDriftError(CompareError):
    """The completed-task log does not match the currently planned tasks."""


class CompletedTaskLogError(CompareError):
    """A line of the completed-task log could not be parsed."""


class TaskFailure(CompareError):
    """A single task could not be encoded, decoded or measured."""


class InternalConsistencyError(CompareError):
    """Repetitions of the same task produced different non-timing outputs."""


class RunSummaryError(CompareError):
    """Too many tasks failed, or none succeeded, during a run.

    The first failure encountered is kept in ``first_failure`` and is also
    the ``__cause__`` of this exception.
    """

    def __init__(self, message: str, first_failure: TaskFailure | None = None) -> None:
        super().__init__(message)
        self.first_failure = first_failure
