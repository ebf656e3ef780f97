import pytest

from coach_review.db.enums import ReviewStatus, SubmissionStatus, UserRole
from coach_review.db.schemas.review import ReviewDraft
from coach_review.errors import PermissionDenied
from coach_review.bot.services.live_query import LiveQueryHub
from coach_review.bot.services.review import ReviewService
from coach_review.bot.services.submission import SubmissionService
from coach_review.bot.views.submission_detail import SubmissionDetailView


async def test_outsiders_cannot_open(athlete, make_user, make_submission):
    submission = await make_submission(athlete)
    outsider = await make_user(UserRole.ATHLETE)

    view = SubmissionDetailView(outsider, submission.id)
    with pytest.raises(PermissionDenied):
        await view.open()
    assert not view.is_open
    assert LiveQueryHub().subscription_count == 0


async def test_athlete_view_follows_claim_comments_and_review(athlete, coach, make_submission):
    submission = await make_submission(athlete, duration=60.0)
    redraws: list[SubmissionStatus] = []
    view = await SubmissionDetailView(
        athlete, submission.id, on_update=lambda v: redraws.append(v.submission.status)
    ).open()

    assert view.is_athlete
    assert not view.can_claim and not view.can_review
    assert view.deadline_status is not None
    assert view.threads == []

    await SubmissionService().claim(submission.id, coach)
    await LiveQueryHub().drain()
    assert view.submission.status == SubmissionStatus.CLAIMED
    assert view.submission.claimed_by_name == "Casey Coach"

    assert view.set_playhead(75) == 60.0
    view.toggle_anchor()
    comment = await view.post_comment("Watch my knees here")
    await LiveQueryHub().drain()
    assert comment.video_timestamp == 60.0
    assert [t.comment.id for t in view.threads] == [comment.id]
    assert view.submission.comment_count == 1

    unanchored = await view.post_comment("General question", anchor_to_playhead=False)
    await LiveQueryHub().drain()
    assert unanchored.video_timestamp is None

    view.set_playhead(0)
    assert view.seek_to_comment(comment.id) == 60.0
    assert view.seek_to_comment(unanchored.id) is None
    assert view.playhead == 60.0

    review = await ReviewService().start_review(submission.id, coach)
    assert view.published_review is None
    await ReviewService().save_draft(review.id, coach, ReviewDraft(overall_feedback="Good", next_steps="Again"))
    await ReviewService().publish(review.id, coach)
    await LiveQueryHub().drain()

    assert view.submission.status == SubmissionStatus.COMPLETE
    assert view.published_review is not None
    assert view.published_review.status == ReviewStatus.PUBLISHED
    assert view.deadline_status is None
    assert SubmissionStatus.COMPLETE in redraws

    view.close()
    assert not view.is_open
    assert LiveQueryHub().subscription_count == 0


async def test_claiming_coach_sees_review_controls_and_own_draft(athlete, coach, make_submission):
    submission = await make_submission(athlete)
    await SubmissionService().claim(submission.id, coach)

    view = await SubmissionDetailView(coach, submission.id).open()
    assert view.can_review
    assert not view.is_athlete

    await ReviewService().start_review(submission.id, coach)
    await LiveQueryHub().drain()
    assert view.submission.status == SubmissionStatus.IN_REVIEW
    # drafts are visible to their coach but are not the published review
    assert view.review is not None and view.review.status == ReviewStatus.DRAFT
    assert view.published_review is None
    view.close()


async def test_comment_edits_and_deletes_from_the_view(athlete, coach, make_submission):
    submission = await make_submission(athlete)
    await SubmissionService().claim(submission.id, coach)
    athlete_view = await SubmissionDetailView(athlete, submission.id).open()
    coach_view = await SubmissionDetailView(coach, submission.id).open()

    question = await athlete_view.post_comment("Too fast?")
    answer = await coach_view.post_comment("A bit.", parent_id=question.id)
    await LiveQueryHub().drain()
    assert len(athlete_view.threads[0].replies) == 1
    assert athlete_view.threads[0].replies[0].id == answer.id

    await athlete_view.edit_comment(question.id, "Too fast on the approach?")
    await LiveQueryHub().drain()
    assert coach_view.comments[0].edited

    with pytest.raises(PermissionDenied):
        await coach_view.delete_comment(question.id)
    assert await athlete_view.delete_comment(question.id) == [question.id, answer.id]
    await LiveQueryHub().drain()
    assert coach_view.threads == []
    assert coach_view.submission.comment_count == 0

    athlete_view.close()
    coach_view.close()
