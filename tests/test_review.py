import pytest

from coach_review.db.enums import ReviewStatus, SubmissionStatus, UserRole
from coach_review.db.schemas.review import ReviewDraft
from coach_review.errors import InvalidTransition, PermissionDenied, ValidationFailed
from coach_review.bot.services.review import ReviewService
from coach_review.bot.services.submission import SubmissionService


@pytest.fixture
async def claimed(athlete, coach, make_submission):
    submission = await make_submission(athlete, skill="Round-off")
    return await SubmissionService().claim(submission.id, coach)


async def test_start_review_moves_to_in_review_and_is_reentrant(coach, claimed):
    review = await ReviewService().start_review(claimed.id, coach)
    assert review.status == ReviewStatus.DRAFT
    assert review.coach_id == coach.id

    submission = await SubmissionService().get_one(claimed.id)
    assert submission.status == SubmissionStatus.IN_REVIEW

    again = await ReviewService().start_review(claimed.id, coach)
    assert again.id == review.id


async def test_only_the_claiming_coach_reviews(athlete, coach, other_coach, claimed, make_submission):
    with pytest.raises(PermissionDenied):
        await ReviewService().start_review(claimed.id, other_coach)
    with pytest.raises(PermissionDenied):
        await ReviewService().start_review(claimed.id, athlete)

    unclaimed = await make_submission(athlete)
    with pytest.raises(PermissionDenied):
        await ReviewService().start_review(unclaimed.id, coach)


async def test_publish_requires_feedback_and_next_steps(coach, claimed):
    service = ReviewService()
    review = await service.start_review(claimed.id, coach)

    with pytest.raises(ValidationFailed):
        await service.publish(review.id, coach)

    await service.save_draft(review.id, coach, ReviewDraft(overall_feedback="Solid rotation."))
    with pytest.raises(ValidationFailed):
        await service.publish(review.id, coach)

    assert (await SubmissionService().get_one(claimed.id)).status == SubmissionStatus.IN_REVIEW


async def test_publish_completes_the_submission(athlete, coach, claimed):
    service = ReviewService()
    review = await service.start_review(claimed.id, coach)
    draft = await service.save_draft(review.id, coach, ReviewDraft(
        overall_feedback="  Solid rotation. ",
        next_steps="Drill the hurdle.",
        strengths=["  Tight tuck ", "", "Good arms"],
        areas_for_improvement=["Landing"],
    ))
    assert draft.overall_feedback == "Solid rotation."
    assert draft.strengths == ["Tight tuck", "Good arms"]

    # athletes never see drafts
    assert await service.get_for_submission(await SubmissionService().get_one(claimed.id), athlete) is None

    published = await service.publish(review.id, coach)
    assert published.status == ReviewStatus.PUBLISHED
    assert published.published_at is not None

    submission = await SubmissionService().get_one(claimed.id)
    assert submission.status == SubmissionStatus.COMPLETE
    assert submission.review_id == review.id
    assert submission.reviewed_at is not None
    assert submission.turnaround_minutes is not None and submission.turnaround_minutes >= 0

    visible = await service.get_for_submission(submission, athlete)
    assert visible is not None and visible.id == review.id


async def test_published_review_is_frozen(coach, claimed):
    service = ReviewService()
    review = await service.start_review(claimed.id, coach)
    await service.save_draft(review.id, coach, ReviewDraft(overall_feedback="Ok", next_steps="More reps"))
    await service.publish(review.id, coach)

    with pytest.raises(ValidationFailed):
        await service.publish(review.id, coach)
    with pytest.raises(ValidationFailed):
        await service.save_draft(review.id, coach, ReviewDraft(overall_feedback="Changed my mind"))
    with pytest.raises(InvalidTransition):
        await service.start_review(claimed.id, coach)


async def test_other_coach_cannot_edit_the_draft(coach, other_coach, claimed):
    review = await ReviewService().start_review(claimed.id, coach)
    with pytest.raises(PermissionDenied):
        await ReviewService().save_draft(review.id, other_coach, ReviewDraft(overall_feedback="Mine now"))
    with pytest.raises(PermissionDenied):
        await ReviewService().publish(review.id, other_coach)


async def test_athlete_is_notified_on_claim_and_review(athlete, coach, make_submission, fake_bot):
    submission = await make_submission(athlete, skill="Round-off")
    await SubmissionService().claim(submission.id, coach)

    assert len(fake_bot.sent) == 1
    assert fake_bot.sent[0]["chat_id"] == athlete.tg_id
    assert "Casey Coach" in fake_bot.sent[0]["text"]
    assert "Round-off" in fake_bot.sent[0]["text"]

    review = await ReviewService().start_review(submission.id, coach)
    # in_review is not announced
    assert len(fake_bot.sent) == 1

    await ReviewService().save_draft(review.id, coach, ReviewDraft(overall_feedback="Nice", next_steps="Repeat"))
    await ReviewService().publish(review.id, coach)

    assert len(fake_bot.sent) == 2
    assert "ready" in fake_bot.sent[1]["text"]
    button = fake_bot.sent[1]["reply_markup"].inline_keyboard[0][0]
    assert button.callback_data == f"sub.open:{submission.id}"


async def test_notification_escapes_user_text(athlete, make_user, make_submission, fake_bot):
    coach = await make_user(UserRole.COACH, "Sam <Coach> & Co")
    submission = await make_submission(athlete, skill="Squat < 90° <b>deep</b>")
    await SubmissionService().claim(submission.id, coach)

    text = fake_bot.sent[0]["text"]
    assert "Squat &lt; 90° &lt;b&gt;deep&lt;/b&gt;" in text
    assert "Sam &lt;Coach&gt; &amp; Co" in text
    assert "<b>" not in text
