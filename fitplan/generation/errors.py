"""Error types for the plan-generation orchestrator.

Stage failures are terminal for the current run. Retrying is a caller
decision, made by calling ``advance`` again.
"""


class GenerationError(Exception):
    """Base exception for all plan-generation errors."""

    pass


class InvalidInputError(GenerationError):
    """Raised when plan input is malformed or missing required fields.

    Rejected at ``start``; the input never enters the state machine.

    Attributes:
        errors: Field-level validation errors, as reported by pydantic
    """

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class NoActiveGenerationError(GenerationError):
    """Raised when ``advance`` is called without an in-flight generation."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"No active plan generation found for user {user_id}")


class UpstreamGenerationError(GenerationError):
    """Raised when a stage's upstream call fails or returns invalid data.

    Attributes:
        stage: Stage name that failed
        cause: Original exception, if the failure came from the client
    """

    def __init__(self, stage: str, message: str, cause: Exception | None = None) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {message}")


class PersistenceError(GenerationError):
    """Raised when the state store or a plan repository fails."""

    pass


class MissingStageDataError(GenerationError):
    """Raised when a step needs accumulated data an earlier stage never produced.

    Unrecoverable for the run: retrying the same step cannot fix it.
    """

    def __init__(self, field: str, step_name: str) -> None:
        self.field = field
        self.step_name = step_name
        super().__init__(f"Step '{step_name}' requires '{field}', which has not been produced")
