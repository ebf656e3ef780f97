# bot/views/queue.py
"""Coach queue: a live snapshot plus pure, client-side tab filtering and sorting."""
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional
from uuid import UUID

from coach_review.db.enums import QueueFilter, QueueSort, SlaState, SubmissionStatus
from coach_review.db.schemas.submission import SubmissionRead, SubmissionFilter
from coach_review.db.schemas.user import UserRead
from coach_review.errors import AlreadyClaimed, NotFound, ReviewWorkflowError
from coach_review.bot.services import sla
from coach_review.bot.services.live_query import Unsubscribe
from coach_review.bot.services.submission import SubmissionService, QUEUE_STATUSES

logger = logging.getLogger(__name__)

_FAR_FUTURE = datetime.max


class RowAction(enum.StrEnum):
    CLAIM = "claim"
    CONTINUE = "continue"
    VIEW = "view"


@dataclass(frozen=True)
class QueueRow:
    submission: SubmissionRead
    action: RowAction
    sla: Optional[sla.SlaEvaluation]
    claiming: bool = False


@dataclass(frozen=True)
class QueueCounts:
    total: int = 0
    awaiting: int = 0
    my_claims: int = 0
    complete: int = 0
    urgent: int = 0


@dataclass(frozen=True)
class Notice:
    ok: bool
    key: str
    params: dict[str, Any] = field(default_factory=dict)


def is_my_claim(submission: SubmissionRead, viewer_id: UUID) -> bool:
    return (
        submission.claimed_by == viewer_id
        and submission.status in (SubmissionStatus.CLAIMED, SubmissionStatus.IN_REVIEW)
    )


def row_action(submission: SubmissionRead, viewer_id: UUID) -> RowAction:
    if submission.status == SubmissionStatus.AWAITING_COACH:
        return RowAction.CLAIM
    if is_my_claim(submission, viewer_id):
        return RowAction.CONTINUE
    return RowAction.VIEW


def filter_submissions(rows: Iterable[SubmissionRead], tab: QueueFilter, viewer_id: UUID) -> list[SubmissionRead]:
    if tab == QueueFilter.AWAITING:
        return [s for s in rows if s.status == SubmissionStatus.AWAITING_COACH]
    if tab == QueueFilter.MY_CLAIMS:
        return [s for s in rows if is_my_claim(s, viewer_id)]
    if tab == QueueFilter.COMPLETE:
        return [s for s in rows if s.status == SubmissionStatus.COMPLETE]
    return list(rows)


def sort_submissions(rows: Iterable[SubmissionRead], order: QueueSort) -> list[SubmissionRead]:
    """Returns a new list; submissions without a deadline go last under the deadline sort."""
    rows = list(rows)
    if order == QueueSort.OLDEST:
        return sorted(rows, key=lambda s: (s.created_at, str(s.id)))
    if order == QueueSort.DEADLINE:
        return sorted(rows, key=lambda s: (s.sla_deadline is None, s.sla_deadline or _FAR_FUTURE, str(s.id)))
    return sorted(rows, key=lambda s: (s.created_at, str(s.id)), reverse=True)


def count_submissions(rows: Iterable[SubmissionRead], viewer_id: UUID, now: Optional[datetime] = None) -> QueueCounts:
    rows = list(rows)
    urgent = 0
    for s in rows:
        if s.status == SubmissionStatus.COMPLETE or s.sla_deadline is None:
            continue
        if sla.evaluate(s.sla_deadline, now).state != SlaState.ON_TRACK:
            urgent += 1
    return QueueCounts(
        total=len(rows),
        awaiting=sum(1 for s in rows if s.status == SubmissionStatus.AWAITING_COACH),
        my_claims=sum(1 for s in rows if is_my_claim(s, viewer_id)),
        complete=sum(1 for s in rows if s.status == SubmissionStatus.COMPLETE),
        urgent=urgent,
    )


class QueueViewModel:
    """
    One coach's queue. ``mount()`` opens a single live query and keeps the
    latest full snapshot; tab and sort changes only re-derive rows from it.
    """

    def __init__(
        self,
        coach: UserRead,
        on_update: Optional[Callable[["QueueViewModel"], Awaitable[None] | None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.coach = coach
        self.tab = QueueFilter.ALL
        self.sort = QueueSort.DEADLINE
        self.snapshot: list[SubmissionRead] = []
        self.loaded = False
        self.on_update = on_update
        self._clock = clock
        self._claiming: set[UUID] = set()
        self._unsubscribe: Optional[Unsubscribe] = None
        self._service = SubmissionService()

    @property
    def mounted(self) -> bool:
        return self._unsubscribe is not None

    async def mount(self) -> None:
        if self.mounted:
            return
        self._unsubscribe = await self._service.subscribe(self._service.queue_scope(self.coach), self._on_snapshot)

    def unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_snapshot(self, rows: list[SubmissionRead]) -> None:
        self.snapshot = list(rows)
        self.loaded = True
        await self._notify()

    async def _notify(self) -> None:
        if self.on_update is None:
            return
        outcome = self.on_update(self)
        if outcome is not None:
            await outcome

    def _now(self) -> Optional[datetime]:
        return self._clock() if self._clock is not None else None

    def set_tab(self, tab: QueueFilter) -> None:
        self.tab = QueueFilter(tab)

    def set_sort(self, order: QueueSort) -> None:
        self.sort = QueueSort(order)

    def is_claiming(self, submission_id: UUID) -> bool:
        return submission_id in self._claiming

    def rows(self) -> list[QueueRow]:
        now = self._now()
        visible = sort_submissions(filter_submissions(self.snapshot, self.tab, self.coach.id), self.sort)
        return [
            QueueRow(
                submission=s,
                action=row_action(s, self.coach.id),
                sla=sla.evaluate(s.sla_deadline, now) if s.sla_deadline and s.status != SubmissionStatus.COMPLETE else None,
                claiming=s.id in self._claiming,
            )
            for s in visible
        ]

    def counts(self) -> QueueCounts:
        return count_submissions(self.snapshot, self.coach.id, self._now())

    def _replace(self, submission: SubmissionRead) -> None:
        self.snapshot = [submission if s.id == submission.id else s for s in self.snapshot]

    def _drop(self, submission_id: UUID) -> None:
        self.snapshot = [s for s in self.snapshot if s.id != submission_id]

    async def claim(self, submission_id: UUID) -> Notice:
        """Claim one row. A second tap while the first is in flight is refused locally."""
        if submission_id in self._claiming:
            return Notice(False, "queue.claim_in_progress")

        self._claiming.add(submission_id)
        try:
            claimed = await self._service.claim(submission_id, self.coach)
            self._replace(claimed)
            return Notice(True, "queue.claimed", {"skill": claimed.skill_name})
        except AlreadyClaimed as exc:
            await self._reconcile(submission_id)
            return Notice(False, exc.key, {"coach": exc.claimed_by_name or "—"})
        except NotFound as exc:
            self._drop(submission_id)
            return Notice(False, exc.key)
        except ReviewWorkflowError as exc:
            return Notice(False, exc.key)
        finally:
            self._claiming.discard(submission_id)

    async def _reconcile(self, submission_id: UUID) -> None:
        try:
            fresh = await self._service.get_one(submission_id)
        except NotFound:
            self._drop(submission_id)
            return
        self._replace(fresh)

    async def refresh(self) -> None:
        """Re-seed the snapshot with a one-shot read (the live query keeps running)."""
        self.snapshot = await self._service.list_pending(
            self.coach,
            SubmissionFilter(statuses=list(QUEUE_STATUSES), order=QueueSort.DEADLINE),
        )
        self.loaded = True
        await self._notify()
