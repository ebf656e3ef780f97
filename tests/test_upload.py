import asyncio
import uuid

import pytest

from coach_review.db.enums import SubmissionStatus, UserRole
from coach_review.errors import PermissionDenied, UploadFailed, ValidationFailed
from coach_review.bot.services.media import MediaStorage, storage_path, validate_video_file, sanitize_file_name
from coach_review.bot.services.submission import SubmissionService
from coach_review.bot.services.upload import UploadService


async def _chunks(*parts: bytes):
    for part in parts:
        yield part


class BrokenStorage:
    """Accepts the upload start, then fails on the first write."""

    def __init__(self) -> None:
        self.removed: list[str] = []

    async def begin(self, key: str) -> None:
        pass

    async def append(self, key: str, chunk: bytes) -> None:
        raise OSError("disk full")

    async def remove(self, key: str) -> None:
        self.removed.append(key)

    def url_for(self, key: str) -> str:
        return f"/media/{key}"


async def test_upload_streams_reports_progress_and_attaches(athlete, make_submission):
    submission = await make_submission(athlete, uploaded=False, size=10)
    seen: list[int] = []

    handle = UploadService().start(
        submission, athlete, _chunks(b"12345", b"67890"),
        on_progress=seen.append, video_duration=12.0,
    )
    result = await handle.wait()

    assert seen == [50, 100]
    assert handle.progress == 100
    assert result.status == SubmissionStatus.AWAITING_COACH
    assert result.video_storage_path == handle.key
    assert result.video_download_url == f"/media/{handle.key}"
    assert result.video_duration == 12.0
    assert MediaStorage().path_for(handle.key).read_bytes() == b"1234567890"


async def test_cancel_discards_partial_upload(athlete, make_submission):
    submission = await make_submission(athlete, uploaded=False, size=10)
    first_chunk_stored = asyncio.Event()
    never = asyncio.Event()

    async def _slow_chunks():
        yield b"12345"
        await never.wait()
        yield b"67890"

    def _on_progress(percent: int) -> None:
        first_chunk_stored.set()

    handle = UploadService().start(submission, athlete, _slow_chunks(), on_progress=_on_progress)
    await first_chunk_stored.wait()
    assert handle.progress == 50

    handle.cancel()
    handle.cancel()

    assert await handle.wait() is None
    assert handle.cancelled
    assert handle.progress == 0
    assert not MediaStorage().path_for(handle.key).exists()
    assert (await SubmissionService().get_one(submission.id)).status == SubmissionStatus.UPLOADING


async def test_storage_failure_surfaces_as_upload_failed(athlete, make_submission):
    submission = await make_submission(athlete, uploaded=False, size=10)
    broken = BrokenStorage()
    UploadService().storage = broken

    handle = UploadService().start(submission, athlete, _chunks(b"12345"))
    with pytest.raises(UploadFailed):
        await handle.wait()

    assert broken.removed == [handle.key]
    assert (await SubmissionService().get_one(submission.id)).status == SubmissionStatus.UPLOADING


async def test_only_the_athlete_uploads_once(athlete, make_user, make_submission):
    pending = await make_submission(athlete, uploaded=False)
    other = await make_user(UserRole.ATHLETE)
    with pytest.raises(PermissionDenied):
        UploadService().start(pending, other, _chunks(b"x"))

    done = await make_submission(athlete)
    with pytest.raises(ValidationFailed):
        UploadService().start(done, athlete, _chunks(b"x"))


def test_video_file_validation():
    validate_video_file("clip.MP4", 1024)
    with pytest.raises(ValidationFailed):
        validate_video_file("clip.gif", 1024)
    with pytest.raises(ValidationFailed):
        validate_video_file("clip.mp4", 0)
    with pytest.raises(ValidationFailed):
        validate_video_file("clip.mp4", 501 * 1024 * 1024)


def test_storage_keys_stay_inside_the_submission_folder():
    owner, submission_id = uuid.uuid4(), uuid.uuid4()
    assert sanitize_file_name("../../etc/my clip!.MOV") == "my_clip.mov"
    key = storage_path(owner, submission_id, "..\\..\\evil.mp4")
    assert key == f"{owner}/{submission_id}/evil.mp4"

    with pytest.raises(ValidationFailed):
        MediaStorage().path_for("../outside.mp4")
