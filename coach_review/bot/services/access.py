# bot/services/access.py
from coach_review.db.enums import CommentAuthorRole, UserRole
from coach_review.db.schemas.submission import SubmissionRead
from coach_review.db.schemas.user import UserRead
from coach_review.errors import PermissionDenied


def can_view(viewer: UserRead, submission: SubmissionRead) -> bool:
    """Athlete, claiming coach, assigned coach and admins may open a submission."""
    if viewer.is_admin:
        return True
    return viewer.id in (submission.athlete_id, submission.claimed_by, submission.coach_id)


def ensure_can_view(viewer: UserRead, submission: SubmissionRead) -> None:
    if not can_view(viewer, submission):
        raise PermissionDenied("Access denied", submission_id=submission.id, viewer_id=viewer.id)


def ensure_can_claim(coach: UserRead) -> None:
    if not coach.can_review:
        raise PermissionDenied("Only coaches can claim submissions", viewer_id=coach.id)


def is_claiming_coach(user: UserRead, submission: SubmissionRead) -> bool:
    return submission.claimed_by is not None and submission.claimed_by == user.id


def comment_author_role(user: UserRead) -> CommentAuthorRole:
    if user.is_admin:
        return CommentAuthorRole.ADMIN
    if user.role == UserRole.COACH:
        return CommentAuthorRole.COACH
    return CommentAuthorRole.ATHLETE
