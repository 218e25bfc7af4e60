"""
Scheduler exceptions
"""


class SchedulerError(Exception):
    """Base class for errors surfaced to the caller of the scheduler."""


class CaseNotFoundError(SchedulerError):
    """One or more test cases do not exist."""

    def __init__(self, case_ids):
        if isinstance(case_ids, str):
            case_ids = [case_ids]
        self.case_ids = list(case_ids)
        super().__init__(f"Test case not found: {', '.join(self.case_ids)}")


class ExecutionNotFoundError(SchedulerError):
    """The execution does not exist or has already finished."""

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution not found or already finished: {execution_id}")


class DispatchError(SchedulerError):
    """No connected agent can take the job."""


class ProtocolError(Exception):
    """A worker sent a message that could not be decoded."""


class ExecutionCancelled(Exception):
    """A running execution was aborted."""

    def __init__(self, message: str = "Execution cancelled"):
        super().__init__(message)


class StepTimeoutError(Exception):
    """A step did not settle within its time limit."""
