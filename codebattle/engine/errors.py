"""
Exception hierarchy for the CodeBattle engine.

Validation and precondition failures are raised before any state is
touched. Collaborator failures wrap problems with the judge or the state
store; judge failures are resolved inside the submission pipeline.
"""


class CodeBattleError(Exception):
    """Base class for all engine errors"""


class ValidationError(CodeBattleError):
    """Bad input to an operation"""


class PreconditionError(CodeBattleError):
    """Operation not allowed in the current contest state"""


class ContestNotActive(PreconditionError):
    def __init__(self, status=None):
        self.status = status
        label = getattr(status, "value", status)
        super().__init__(f"Contest is not active (status: {label})" if status is not None else "Contest is not active")


class NotFoundError(CodeBattleError):
    """Referenced entity does not exist"""


class AuthenticationError(CodeBattleError):
    """Login rejected"""


class CollaboratorFailure(CodeBattleError):
    """An external collaborator (judge, state store) failed"""


class StorageUnavailable(CollaboratorFailure):
    """The state repository could not be read or written"""


class JudgeError(CollaboratorFailure):
    """The judge failed or returned a malformed verdict"""
