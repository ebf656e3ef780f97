# bot/services/media.py
import logging
import re
from pathlib import Path, PurePosixPath
from typing import ClassVar, Optional, Self
from uuid import UUID

from coach_review.config import Settings
from coach_review.errors import ValidationFailed

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def validate_video_file(file_name: str, size: int) -> None:
    """Reject files with a non-video extension or over the configured size."""
    settings = Settings()
    suffix = PurePosixPath(file_name or "").suffix.lower()
    if suffix not in settings.video_extensions:
        raise ValidationFailed(
            f"Unsupported video format {suffix or '(none)'}; allowed: {', '.join(settings.video_extensions)}",
            field="video_file_name",
        )
    if size is None or size <= 0:
        raise ValidationFailed("Video file is empty", field="video_file_size")
    if size > settings.max_video_bytes:
        raise ValidationFailed(
            f"Video is larger than {settings.max_video_bytes // (1024 * 1024)} MB",
            field="video_file_size",
        )


def sanitize_file_name(file_name: str) -> str:
    name = PurePosixPath(file_name.replace("\\", "/")).name
    stem, dot, suffix = name.rpartition(".")
    if not dot:
        stem, suffix = name, ""
    stem = _UNSAFE.sub("_", stem).strip("._") or "video"
    suffix = _UNSAFE.sub("", suffix).lower()
    return f"{stem}.{suffix}" if suffix else stem


def storage_path(owner_id: UUID, submission_id: UUID, file_name: str) -> str:
    """Storage key ``{owner}/{submission}/{file}``; the file part never escapes the folder."""
    return f"{owner_id}/{submission_id}/{sanitize_file_name(file_name)}"


class MediaStorage:
    """Video objects on the local filesystem under ``MEDIA_ROOT``, served from ``MEDIA_BASE_URL``."""
    _instance: ClassVar[Optional["MediaStorage"]] = None

    def __new__(cls) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return

        settings = Settings()
        self.root: Path = settings.media_root
        self.base_url: str = settings.media_base_url
        self._initialized = True

    def path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValidationFailed(f"Storage key escapes media root: {key}", field="video_storage_path")
        return path

    def url_for(self, key: str) -> str:
        return f"{self.base_url}{key}"

    async def begin(self, key: str) -> None:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"")

    async def append(self, key: str, chunk: bytes) -> None:
        with self.path_for(key).open("ab") as raw:
            raw.write(chunk)

    async def remove(self, key: str) -> None:
        path = self.path_for(key)
        path.unlink(missing_ok=True)
        logger.info("Removed media object %s", key)

    async def exists(self, key: str) -> bool:
        return self.path_for(key).exists()
