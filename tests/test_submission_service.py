import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from coach_review.db.enums import SubmissionStatus, UserRole, QueueSort
from coach_review.db.schemas.submission import SubmissionCreate, SubmissionRead, SubmissionUpdate, SubmissionFilter
from coach_review.errors import AlreadyClaimed, InvalidTransition, NotFound, PermissionDenied, ValidationFailed
from coach_review.bot.services.submission import SubmissionService
from coach_review.bot.services.user import UserService
from coach_review.db.database import DataBase
from coach_review.utils.clock import utc_now


def _payload(**overrides) -> SubmissionCreate:
    data = dict(
        skill_name="Kip up",
        athlete_context="Morning session",
        video_file_name="kip.mov",
        video_file_size=2048,
    )
    data.update(overrides)
    return SubmissionCreate(**data)


async def test_create_starts_uploading_with_sla_deadline(athlete):
    before = utc_now()
    submission = await SubmissionService().create_submission(athlete, _payload())

    assert submission.status == SubmissionStatus.UPLOADING
    assert submission.athlete_id == athlete.id
    assert submission.athlete_name == "Alex Athlete"
    assert submission.comment_count == 0
    assert submission.claimed_by is None
    assert before + timedelta(hours=48) <= submission.sla_deadline <= utc_now() + timedelta(hours=48)


async def test_create_keeps_supplied_deadline(athlete):
    deadline = utc_now().replace(microsecond=0) + timedelta(hours=5)
    submission = await SubmissionService().create_submission(athlete, _payload(sla_deadline=deadline))
    assert submission.sla_deadline == deadline


async def test_create_stores_aware_deadline_as_naive_utc(athlete):
    aware = datetime(2030, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    submission = await SubmissionService().create_submission(athlete, _payload(sla_deadline=aware))
    assert submission.sla_deadline == datetime(2030, 1, 1, 12, 0)

    reloaded = await SubmissionService().get_one(submission.id)
    assert reloaded.sla_deadline == datetime(2030, 1, 1, 12, 0)


async def test_create_rejects_non_video_and_non_athletes(athlete, make_user):
    with pytest.raises(ValidationFailed):
        await SubmissionService().create_submission(athlete, _payload(video_file_name="notes.pdf"))

    stranger = await make_user(UserRole.UNREGISTERED)
    with pytest.raises(PermissionDenied):
        await SubmissionService().create_submission(stranger, _payload())


async def test_attach_media_hands_submission_to_coaches(athlete, make_submission):
    submission = await make_submission(athlete, duration=42.5)
    assert submission.status == SubmissionStatus.AWAITING_COACH
    assert submission.video_storage_path == f"{athlete.id}/{submission.id}/attempt.mp4"
    assert submission.video_duration == 42.5


async def test_claim_assigns_the_coach(athlete, coach, make_submission):
    submission = await make_submission(athlete)
    claimed = await SubmissionService().claim(submission.id, coach)

    assert claimed.status == SubmissionStatus.CLAIMED
    assert claimed.claimed_by == coach.id
    assert claimed.claimed_by_name == "Casey Coach"
    assert claimed.claimed_at is not None


async def test_concurrent_claims_have_exactly_one_winner(athlete, make_user, make_submission):
    submission = await make_submission(athlete)
    coaches = [await make_user(UserRole.COACH) for _ in range(5)]

    results = await asyncio.gather(
        *(SubmissionService().claim(submission.id, c) for c in coaches),
        return_exceptions=True,
    )

    winners = [r for r in results if isinstance(r, SubmissionRead)]
    losers = [r for r in results if isinstance(r, AlreadyClaimed)]
    assert len(winners) == 1
    assert len(losers) == 4

    stored = await SubmissionService().get_one(submission.id)
    assert stored.claimed_by == winners[0].claimed_by
    assert all(exc.claimed_by == stored.claimed_by for exc in losers)


async def test_claiming_twice_is_already_claimed_even_for_the_same_coach(athlete, coach, make_submission):
    submission = await make_submission(athlete)
    await SubmissionService().claim(submission.id, coach)

    with pytest.raises(AlreadyClaimed) as info:
        await SubmissionService().claim(submission.id, coach)
    assert info.value.claimed_by_name == "Casey Coach"


async def test_claim_requires_a_reviewer_and_an_existing_submission(athlete, coach, make_submission):
    submission = await make_submission(athlete)
    with pytest.raises(PermissionDenied):
        await SubmissionService().claim(submission.id, athlete)
    with pytest.raises(NotFound):
        await SubmissionService().claim(uuid.uuid4(), coach)


async def test_uploading_submission_cannot_be_claimed(athlete, coach, make_submission):
    submission = await make_submission(athlete, uploaded=False)
    with pytest.raises(AlreadyClaimed):
        await SubmissionService().claim(submission.id, coach)


async def test_status_never_moves_backwards(athlete, coach, make_submission):
    service = SubmissionService()
    submission = await make_submission(athlete)
    await service.claim(submission.id, coach)

    with pytest.raises(InvalidTransition):
        await service.patch(SubmissionUpdate(id=submission.id, status=SubmissionStatus.AWAITING_COACH), athlete)
    with pytest.raises(InvalidTransition):
        await service.patch(SubmissionUpdate(id=submission.id, status=SubmissionStatus.UPLOADING), athlete)

    stored = await service.get_one(submission.id)
    assert stored.status == SubmissionStatus.CLAIMED

    # media fields stay editable without touching the status
    same = await service.patch(SubmissionUpdate(id=submission.id, thumbnail_url="/t.jpg"), athlete)
    assert same.status == SubmissionStatus.CLAIMED
    assert same.claimed_by == coach.id
    assert same.thumbnail_url == "/t.jpg"


@pytest.mark.parametrize("target", [SubmissionStatus.CLAIMED, SubmissionStatus.IN_REVIEW, SubmissionStatus.COMPLETE])
async def test_patch_cannot_make_workflow_moves(athlete, admin, make_submission, target):
    submission = await make_submission(athlete)
    with pytest.raises(InvalidTransition):
        await SubmissionService().patch(SubmissionUpdate(id=submission.id, status=target), athlete)
    with pytest.raises(InvalidTransition):
        await SubmissionService().patch(SubmissionUpdate(id=submission.id, status=target), admin)

    stored = await SubmissionService().get_one(submission.id)
    assert stored.status == SubmissionStatus.AWAITING_COACH
    assert stored.claimed_by is None


async def test_store_refuses_workflow_statuses_on_plain_update(athlete, make_submission):
    submission = await make_submission(athlete)
    with pytest.raises(InvalidTransition):
        await DataBase().update_submission(SubmissionUpdate(id=submission.id, status=SubmissionStatus.CLAIMED))
    assert (await DataBase().get_submission_by_id(submission.id)).status == SubmissionStatus.AWAITING_COACH


async def test_submission_stays_claimable_after_rejected_patch(athlete, coach, make_submission):
    submission = await make_submission(athlete)
    with pytest.raises(InvalidTransition):
        await SubmissionService().patch(SubmissionUpdate(id=submission.id, status=SubmissionStatus.CLAIMED), athlete)

    claimed = await SubmissionService().claim(submission.id, coach)
    assert claimed.claimed_by == coach.id


async def test_claimed_submission_cannot_be_completed_by_patch(athlete, coach, make_submission):
    submission = await make_submission(athlete)
    await SubmissionService().claim(submission.id, coach)
    with pytest.raises(InvalidTransition):
        await SubmissionService().patch(SubmissionUpdate(id=submission.id, status=SubmissionStatus.COMPLETE), athlete)

    stored = await SubmissionService().get_one(submission.id)
    assert stored.status == SubmissionStatus.CLAIMED
    assert stored.review_id is None


async def test_only_the_athlete_or_an_admin_may_patch(athlete, coach, admin, make_submission):
    submission = await make_submission(athlete)
    with pytest.raises(PermissionDenied):
        await SubmissionService().patch(SubmissionUpdate(id=submission.id, thumbnail_url="/t.jpg"), coach)

    patched = await SubmissionService().patch(SubmissionUpdate(id=submission.id, thumbnail_url="/t.jpg"), admin)
    assert patched.thumbnail_url == "/t.jpg"


async def test_patch_unknown_submission_is_not_found(athlete):
    with pytest.raises(NotFound):
        await SubmissionService().patch(SubmissionUpdate(id=uuid.uuid4(), thumbnail_url="/t.jpg"), athlete)


async def test_coach_queue_covers_routed_team_and_open_pool(make_user, make_submission, admin):
    team_a, team_b = uuid.uuid4(), uuid.uuid4()
    coach_a = await make_user(UserRole.COACH, "Coach A", team_id=team_a)
    coach_b = await make_user(UserRole.COACH, "Coach B", team_id=team_b)

    routed_to_a = await UserService().assign_coach(await make_user(UserRole.ATHLETE), coach_a)
    routed_to_b = await UserService().assign_coach(await make_user(UserRole.ATHLETE), coach_b)
    unrouted = await make_user(UserRole.ATHLETE)

    sub_a = await make_submission(routed_to_a, skill="A")
    sub_b = await make_submission(routed_to_b, skill="B")
    sub_open = await make_submission(unrouted, skill="Open")
    await make_submission(unrouted, skill="Still uploading", uploaded=False)

    seen_by_a = {s.id for s in await SubmissionService().list_pending(coach_a)}
    assert seen_by_a == {sub_a.id, sub_open.id}

    seen_by_admin = {s.id for s in await SubmissionService().list_pending(admin)}
    assert seen_by_admin == {sub_a.id, sub_b.id, sub_open.id}


async def test_list_pending_filters_by_status_and_orders_by_deadline(athlete, coach, make_submission):
    now = utc_now()
    late = await make_submission(athlete, skill="late", sla_deadline=now + timedelta(hours=30))
    soon = await make_submission(athlete, skill="soon", sla_deadline=now + timedelta(hours=2))
    claimed = await make_submission(athlete, skill="claimed", sla_deadline=now + timedelta(hours=1))
    await SubmissionService().claim(claimed.id, coach)

    rows = await SubmissionService().list_pending(
        coach,
        SubmissionFilter(statuses=[SubmissionStatus.AWAITING_COACH], order=QueueSort.DEADLINE),
    )
    assert [s.id for s in rows] == [soon.id, late.id]


async def test_viewer_access(athlete, coach, other_coach, admin, make_user, make_submission):
    service = SubmissionService()
    submission = await make_submission(athlete)

    assert (await service.get_for_viewer(submission.id, athlete)).id == submission.id
    assert (await service.get_for_viewer(submission.id, admin)).id == submission.id
    with pytest.raises(PermissionDenied):
        await service.get_for_viewer(submission.id, coach)

    await service.claim(submission.id, coach)
    assert (await service.get_for_viewer(submission.id, coach)).claimed_by == coach.id
    with pytest.raises(PermissionDenied):
        await service.get_for_viewer(submission.id, other_coach)

    other_athlete = await make_user(UserRole.ATHLETE)
    with pytest.raises(PermissionDenied):
        await service.get_for_viewer(submission.id, other_athlete)


async def test_assigned_coach_can_view_before_claiming(make_user, coach, make_submission):
    athlete = await UserService().assign_coach(await make_user(UserRole.ATHLETE), coach)
    submission = await make_submission(athlete)
    assert submission.coach_id == coach.id
    assert (await SubmissionService().get_for_viewer(submission.id, coach)).id == submission.id


async def test_athlete_lists_own_submissions_newest_first(athlete, make_user, make_submission):
    first = await make_submission(athlete, skill="first")
    second = await make_submission(athlete, skill="second")
    await make_submission(await make_user(UserRole.ATHLETE), skill="someone else")

    mine = await SubmissionService().list_for_athlete(athlete)
    assert [s.id for s in mine] == [second.id, first.id]
