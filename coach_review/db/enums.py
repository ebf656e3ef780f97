# db/enums.py
import enum

class UserRole(enum.StrEnum):
    ATHLETE = "athlete"
    COACH = "coach"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"
    UNREGISTERED = "unregistered"

ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPERADMIN})
REVIEWER_ROLES = frozenset({UserRole.COACH, UserRole.ADMIN, UserRole.SUPERADMIN})

class SubmissionStatus(enum.StrEnum):
    UPLOADING = "uploading"
    AWAITING_COACH = "awaiting_coach"
    CLAIMED = "claimed"
    IN_REVIEW = "in_review"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return STATUS_ORDER.index(self)

    def precedes_or_equals(self, other: "SubmissionStatus") -> bool:
        return self.rank <= other.rank

# left-to-right progression; a write may only keep or advance the position
STATUS_ORDER = (
    SubmissionStatus.UPLOADING,
    SubmissionStatus.AWAITING_COACH,
    SubmissionStatus.CLAIMED,
    SubmissionStatus.IN_REVIEW,
    SubmissionStatus.COMPLETE,
)

class ReviewStatus(enum.StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"

class CommentAuthorRole(enum.StrEnum):
    ATHLETE = "athlete"
    COACH = "coach"
    ADMIN = "admin"

class QueueFilter(enum.StrEnum):
    ALL = "all"
    AWAITING = "awaiting"
    MY_CLAIMS = "my_claims"
    COMPLETE = "complete"

class QueueSort(enum.StrEnum):
    NEWEST = "newest"
    OLDEST = "oldest"
    DEADLINE = "deadline"

class SlaState(enum.StrEnum):
    BREACHED = "breached"
    URGENT = "urgent"
    ON_TRACK = "on_track"

class UiMode(enum.StrEnum):
    HOME = "home"
    SUBMIT = "submit"
    QUEUE = "queue"
    SUBMISSION = "submission"
    COMMENT = "comment"
    REVIEW = "review"
