"""
Typed failures produced by the guideline engine.

Propagation policy:
- NotFound, ValidationError and PermissionDenied are raised to the caller
  immediately.
- PartialFailure is never raised out of a service; it is collected in the
  result's ``warnings`` and logged.
- ConsistencyRollbackFailure and StoreError propagate unmodified.
"""


class GuidelineEngineError(Exception):
    """Base class for all engine failures."""

    kind = "ENGINE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(GuidelineEngineError):
    """A guideline, screening or profile does not exist (or is not visible)."""

    kind = "NOT_FOUND"

    def __init__(self, entity: str, key: str | None = None):
        message = f"{entity} not found" if key is None else f"{entity} not found: {key}"
        super().__init__(message)
        self.entity = entity
        self.key = key


class ValidationError(GuidelineEngineError):
    """Caller input is missing or malformed."""

    kind = "VALIDATION_ERROR"


class PermissionDenied(GuidelineEngineError):
    """The caller may see the record but not change it."""

    kind = "PERMISSION_DENIED"


class PartialFailure(GuidelineEngineError):
    """A non-fatal step failed; the overall operation still succeeded."""

    kind = "PARTIAL_FAILURE"

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step


class StoreError(GuidelineEngineError):
    """The row store failed. The backend message is preserved verbatim."""

    kind = "STORE_ERROR"

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class ConsistencyRollbackFailure(GuidelineEngineError):
    """
    A compensating delete failed after an earlier step failed.

    The store now holds an orphaned row; this is more severe than the
    original failure and must be surfaced as fatal.
    """

    kind = "CONSISTENCY_ROLLBACK_FAILED"

    def __init__(
        self,
        message: str,
        orphan_id: str,
        original_error: BaseException,
        rollback_error: BaseException,
    ):
        super().__init__(message)
        self.orphan_id = orphan_id
        self.original_error = original_error
        self.rollback_error = rollback_error
