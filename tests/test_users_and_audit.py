import uuid

import pytest

from coach_review.db.enums import UiMode, UserRole
from coach_review.errors import NotFound, ValidationFailed
from coach_review.bot.services.audit_log import audit_logger
from coach_review.bot.services.submission import SubmissionService
from coach_review.bot.services.user import UserService


async def test_get_user_autocreates_and_refreshes_username(db):
    service = UserService()
    created = await service.get_user(tg_id=555, tg_username="first_name", display_name="Sam", autocreate=True)
    assert created.role == UserRole.UNREGISTERED

    renamed = await service.get_user(tg_id=555, tg_username="@second_name")
    assert renamed.id == created.id
    assert renamed.tg_username == "second_name"
    assert (await service.get_by_username("@second_name")).id == created.id

    assert await service.get_user(tg_id=999) is None
    with pytest.raises(NotFound):
        await service.get_by_username("ghost")


async def test_role_ui_mode_and_coach_assignment(make_user, coach):
    service = UserService()
    user = await make_user(UserRole.UNREGISTERED)

    athlete = await service.change_role(user, UserRole.ATHLETE)
    assert athlete.role == UserRole.ATHLETE

    same = await service.change_ui_mode(athlete, UiMode.HOME)
    assert same is athlete
    moved = await service.change_ui_mode(athlete, UiMode.SUBMIT)
    assert moved.ui_mode == UiMode.SUBMIT

    team = uuid.uuid4()
    coach = await service.set_team(coach, team)
    routed = await service.assign_coach(athlete, coach)
    assert routed.coach_id == coach.id
    assert routed.team_id == team

    with pytest.raises(ValidationFailed):
        await service.assign_coach(athlete, await make_user(UserRole.ATHLETE))


async def test_state_changes_are_audited_and_reads_are_not(athlete, coach, make_submission):
    submission = await make_submission(athlete)
    await SubmissionService().list_pending(coach)
    await SubmissionService().claim(submission.id, coach)

    entries, total = await audit_logger.list_entries(action="services.submission.claim")
    assert total == 1
    assert entries[0].actor_id == coach.id
    assert entries[0].payload["actor"]["name"] == "Casey Coach"
    assert entries[0].payload["data"]["result"]["status"] == "claimed"

    _, reads = await audit_logger.list_entries(action="services.submission.list_pending")
    assert reads == 0


async def test_failed_actions_are_audited_as_errors(athlete, coach, other_coach, make_submission):
    submission = await make_submission(athlete)
    await SubmissionService().claim(submission.id, coach)
    with pytest.raises(Exception):
        await SubmissionService().claim(submission.id, other_coach)

    entries, total = await audit_logger.list_entries(action="services.submission.claim.error")
    assert total == 1
    assert entries[0].actor_id == other_coach.id
    assert "AlreadyClaimed" in entries[0].payload["data"]["error"]


async def test_bound_actor_is_used_when_the_call_names_none(db, athlete):
    token = audit_logger.bind_actor(athlete.id)
    try:
        entry = await audit_logger.log(action="manual.check", payload={"note": "hello"})
    finally:
        audit_logger.unbind_actor(token)

    assert entry.actor_id == athlete.id
    assert entry.payload["note"] == "hello"
    assert "_meta" in entry.payload
