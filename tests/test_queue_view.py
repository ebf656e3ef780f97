import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Optional

from coach_review.db.enums import QueueFilter, QueueSort, SubmissionStatus
from coach_review.db.schemas.submission import SubmissionRead
from coach_review.bot.services.live_query import LiveQueryHub
from coach_review.bot.services.submission import SubmissionService
from coach_review.bot.views.queue import (
    QueueViewModel, RowAction, count_submissions, filter_submissions, row_action, sort_submissions,
)

NOW = datetime(2026, 5, 4, 9, 0)
ME = uuid.uuid4()
SOMEONE = uuid.uuid4()


def _sub(
    status: SubmissionStatus = SubmissionStatus.AWAITING_COACH,
    *,
    created: timedelta = timedelta(0),
    deadline: Optional[timedelta] = None,
    claimed_by: Optional[uuid.UUID] = None,
) -> SubmissionRead:
    return SubmissionRead(
        id=uuid.uuid4(),
        athlete_id=uuid.uuid4(),
        athlete_name="Athlete",
        skill_name="Skill",
        athlete_context="Context",
        video_file_name="v.mp4",
        video_file_size=1,
        status=status,
        claimed_by=claimed_by,
        sla_deadline=NOW + deadline if deadline is not None else None,
        created_at=NOW + created,
        updated_at=NOW + created,
    )


def test_row_actions():
    assert row_action(_sub(), ME) == RowAction.CLAIM
    assert row_action(_sub(SubmissionStatus.CLAIMED, claimed_by=ME), ME) == RowAction.CONTINUE
    assert row_action(_sub(SubmissionStatus.IN_REVIEW, claimed_by=ME), ME) == RowAction.CONTINUE
    assert row_action(_sub(SubmissionStatus.CLAIMED, claimed_by=SOMEONE), ME) == RowAction.VIEW
    assert row_action(_sub(SubmissionStatus.COMPLETE, claimed_by=ME), ME) == RowAction.VIEW


def test_tabs_partition_the_snapshot():
    awaiting = _sub()
    mine = _sub(SubmissionStatus.IN_REVIEW, claimed_by=ME)
    theirs = _sub(SubmissionStatus.CLAIMED, claimed_by=SOMEONE)
    done = _sub(SubmissionStatus.COMPLETE, claimed_by=ME)
    rows = [awaiting, mine, theirs, done]

    assert filter_submissions(rows, QueueFilter.ALL, ME) == rows
    assert filter_submissions(rows, QueueFilter.AWAITING, ME) == [awaiting]
    assert filter_submissions(rows, QueueFilter.MY_CLAIMS, ME) == [mine]
    assert filter_submissions(rows, QueueFilter.COMPLETE, ME) == [done]


def test_sorting_is_stable_and_idempotent():
    no_deadline = _sub(created=timedelta(minutes=1))
    soon = _sub(created=timedelta(minutes=3), deadline=timedelta(hours=1))
    later = _sub(created=timedelta(minutes=2), deadline=timedelta(hours=20))
    rows = [no_deadline, later, soon]

    by_deadline = sort_submissions(rows, QueueSort.DEADLINE)
    assert by_deadline == [soon, later, no_deadline]
    assert sort_submissions(by_deadline, QueueSort.DEADLINE) == by_deadline

    assert sort_submissions(rows, QueueSort.NEWEST) == [soon, later, no_deadline]
    assert sort_submissions(rows, QueueSort.OLDEST) == [no_deadline, later, soon]
    # the input is left untouched
    assert rows == [no_deadline, later, soon]


def test_counts():
    rows = [
        _sub(deadline=timedelta(hours=1)),
        _sub(deadline=-timedelta(hours=1)),
        _sub(deadline=timedelta(hours=30)),
        _sub(SubmissionStatus.CLAIMED, claimed_by=ME, deadline=timedelta(hours=40)),
        _sub(SubmissionStatus.COMPLETE, claimed_by=ME, deadline=-timedelta(hours=5)),
        _sub(),
    ]
    counts = count_submissions(rows, ME, NOW)
    assert counts.total == 6
    assert counts.awaiting == 4
    assert counts.my_claims == 1
    assert counts.complete == 1
    assert counts.urgent == 2


async def test_view_model_follows_live_changes(athlete, coach, other_coach, make_submission):
    submission = await make_submission(athlete)
    updates: list[int] = []

    mine = QueueViewModel(coach, on_update=lambda vm: updates.append(len(vm.snapshot)))
    theirs = QueueViewModel(other_coach)
    await mine.mount()
    await theirs.mount()

    assert mine.loaded and updates == [1]
    assert [r.action for r in mine.rows()] == [RowAction.CLAIM]

    notice = await mine.claim(submission.id)
    assert notice.ok and notice.key == "queue.claimed"
    assert [r.action for r in mine.rows()] == [RowAction.CONTINUE]
    mine.set_tab(QueueFilter.MY_CLAIMS)
    assert [r.submission.id for r in mine.rows()] == [submission.id]
    assert mine.counts().my_claims == 1

    # the other coach's queue moved without any action on their side
    await LiveQueryHub().drain()
    assert [r.action for r in theirs.rows()] == [RowAction.VIEW]
    lost = await theirs.claim(submission.id)
    assert not lost.ok
    assert lost.key == "errors.already_claimed"
    assert lost.params == {"coach": "Casey Coach"}

    mine.unmount()
    theirs.unmount()
    assert LiveQueryHub().subscription_count == 0


async def test_second_tap_while_claiming_is_refused(athlete, coach, make_submission):
    submission = await make_submission(athlete)
    vm = QueueViewModel(coach)
    await vm.mount()

    first, second = await asyncio.gather(vm.claim(submission.id), vm.claim(submission.id))

    assert first.ok
    assert not second.ok and second.key == "queue.claim_in_progress"
    assert not vm.is_claiming(submission.id)
    vm.unmount()


async def test_unmounted_view_model_stops_receiving(athlete, coach, make_submission):
    vm = QueueViewModel(coach)
    await vm.mount()
    vm.unmount()

    await make_submission(athlete)
    assert vm.snapshot == []

    await vm.refresh()
    assert len(vm.snapshot) == 1


async def test_claiming_a_vanished_row_drops_it(coach):
    vm = QueueViewModel(coach)
    ghost = _sub()
    vm.snapshot = [ghost]
    notice = await vm.claim(ghost.id)
    assert notice.key == "errors.not_found"
    assert vm.snapshot == []
    assert await SubmissionService().list_pending(coach) == []
