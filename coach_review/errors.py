# errors.py
"""Failure taxonomy of the review workflow.

Services raise these; bot handlers catch them at the handler boundary and
turn them into a localized, non-fatal message. ``key`` names the locale
entry used for that message.
"""
from typing import Any, Optional
from uuid import UUID


class ReviewWorkflowError(Exception):
    key = "errors.generic"

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.__class__.__name__)
        self.details = details


class NotFound(ReviewWorkflowError, LookupError):
    key = "errors.not_found"

    def __init__(self, entity: str, entity_id: Any = None) -> None:
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class AlreadyClaimed(ReviewWorkflowError):
    key = "errors.already_claimed"

    def __init__(self, submission_id: UUID, claimed_by: Optional[UUID] = None, claimed_by_name: Optional[str] = None) -> None:
        super().__init__(
            f"Submission {submission_id} is already claimed",
            submission_id=submission_id,
            claimed_by=claimed_by,
        )
        self.submission_id = submission_id
        self.claimed_by = claimed_by
        self.claimed_by_name = claimed_by_name


class PermissionDenied(ReviewWorkflowError, PermissionError):
    key = "errors.permission_denied"


class UploadFailed(ReviewWorkflowError):
    key = "errors.upload_failed"


class ValidationFailed(ReviewWorkflowError, ValueError):
    key = "errors.validation_failed"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, field=field)
        self.field = field


class InvalidTransition(ValidationFailed):
    key = "errors.invalid_transition"

    def __init__(self, current: Any, target: Any) -> None:
        super().__init__(f"Cannot move submission from {current} to {target}", field="status")
        self.current = current
        self.target = target
