"""
Deployment error taxonomy.

These exceptions are raised inside a phase. The orchestrator converts every
one of them into a coded Message on the final ExecutionResult; they never
cross a phase boundary as a stack unwind.
"""
from typing import List, Optional

from .state import Message


class DeploymentError(Exception):
    """Base class for deployment failures."""
    code = "deployment_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code

    def to_message(self) -> Message:
        return Message(self.code, str(self))


class ValidationError(DeploymentError):
    """The attempt cannot start; surfaced verbatim to the caller."""
    code = "validation_failed"

    def __init__(self, message: str, errors: Optional[List[Message]] = None, code: Optional[str] = None):
        super().__init__(message, code)
        self.errors = list(errors or [])


class PlanningError(DeploymentError):
    """AI Planning Service unavailable or its output unusable. Terminal for the attempt."""
    code = "planning_failed"


class ExecutionStepError(DeploymentError):
    """A plan step failed after the retry policy gave up."""
    code = "step_failed"

    def __init__(
        self,
        message: str,
        action: str,
        transient: bool = False,
        critical: bool = False,
        attempts: int = 1,
        code: Optional[str] = None,
    ):
        super().__init__(message, code)
        self.action = action
        self.transient = transient
        self.critical = critical
        self.attempts = attempts


class RecoveryExhausted(DeploymentError):
    """Recovery attempts capped; final state is FAILED."""
    code = "recovery_exhausted"

    def __init__(self, attempts: int, last_error: Optional[str] = None):
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Recovery gave up after {attempts} attempt(s){detail}")
        self.attempts = attempts
