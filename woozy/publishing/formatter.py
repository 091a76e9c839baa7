"""Conversion of stored posts into the Ayrshare ``/post`` request body."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from woozy.core.errors import ValidationError


SCHEDULE_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
YOUTUBE_TITLE_MAX_CHARS = 100

VIDEO_EXTENSIONS = {"mp4", "mov", "m4v", "webm", "avi", "mkv"}
TIKTOK_UNSUPPORTED_IMAGE_EXTENSIONS = {"png", "gif", "webp"}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as returned by SQLite) as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_schedule_date(value: datetime) -> str:
    return as_utc(value).strftime(SCHEDULE_DATE_FORMAT)


def effective_schedule(scheduled_at: Optional[datetime], now: datetime) -> Optional[datetime]:
    """Return the schedule time only while it is still in the future."""

    scheduled = as_utc(scheduled_at)
    if scheduled is None or scheduled <= as_utc(now):
        return None
    return scheduled


def media_extension(url: str) -> str:
    path = url.lower().split("?", 1)[0].split("#", 1)[0]
    tail = path.rsplit("/", 1)[-1]
    if "." not in tail:
        return ""
    return tail.rsplit(".", 1)[-1]


def is_video_url(url: str) -> bool:
    return media_extension(url) in VIDEO_EXTENSIONS


def clean_media_urls(urls: Iterable[str]) -> list[str]:
    return [url.strip() for url in urls if isinstance(url, str) and url.strip()]


def youtube_title(caption: str) -> str:
    first_line = caption.strip().splitlines()[0] if caption.strip() else ""
    return first_line[:YOUTUBE_TITLE_MAX_CHARS].strip() or "Untitled"


def check_media_compatibility(platforms: list[str], media_urls: list[str]) -> None:
    if "tiktok" not in platforms:
        return
    for url in media_urls:
        extension = media_extension(url)
        if extension in TIKTOK_UNSUPPORTED_IMAGE_EXTENSIONS:
            raise ValidationError(f"TikTok does not support {extension.upper()} images")


def build_submission_payload(
    *,
    caption: str,
    platforms: Iterable[str],
    media_urls: Iterable[str],
    scheduled_at: Optional[datetime],
    now: datetime,
) -> Dict[str, Any]:
    normalized_platforms = [platform.strip().lower() for platform in platforms if platform.strip()]
    cleaned_media = clean_media_urls(media_urls)
    check_media_compatibility(normalized_platforms, cleaned_media)

    payload: Dict[str, Any] = {
        "post": caption,
        "platforms": normalized_platforms,
    }
    if cleaned_media:
        payload["mediaUrls"] = cleaned_media
        if any(is_video_url(url) for url in cleaned_media):
            payload["isVideo"] = True
            if "youtube" in normalized_platforms:
                payload["youTubeOptions"] = {"title": youtube_title(caption)}

    schedule = effective_schedule(scheduled_at, now)
    if schedule is not None:
        payload["scheduleDate"] = format_schedule_date(schedule)
    return payload
