"""Publish adapter: submits stored posts to Ayrshare and normalizes its responses."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from woozy.approvals.states import POST_POSTED, POST_SCHEDULED
from woozy.core.errors import ConfigurationError, UpstreamError
from woozy.core.logger import get_logger
from woozy.publishing.ayrshare_client import AyrshareAPIError, AyrshareClient, get_ayrshare_client
from woozy.publishing.formatter import build_submission_payload
from woozy.storage.models import Post


logger = get_logger("woozy.publishing.adapter")


@dataclass(frozen=True)
class PublishOutcome:
    external_id: str
    final_status: str
    response: Dict[str, Any] = field(default_factory=dict)


def _message_of(item: Any) -> Optional[str]:
    if isinstance(item, dict):
        message = item.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    if isinstance(item, str) and item.strip():
        return item.strip()
    return None


def extract_error_messages(body: Dict[str, Any]) -> list[str]:
    """Collect per-post errors first, then top-level errors, then the top-level message."""

    messages: list[str] = []
    posts = body.get("posts")
    if isinstance(posts, list):
        for item in posts:
            if not isinstance(item, dict):
                continue
            for error in item.get("errors") or []:
                message = _message_of(error)
                if message:
                    messages.append(message)
            message = _message_of(item)
            if message:
                messages.append(message)
    for error in body.get("errors") or []:
        message = _message_of(error)
        if message:
            messages.append(message)
    if not messages:
        message = _message_of(body)
        if message:
            messages.append(message)

    unique: list[str] = []
    for message in messages:
        if message not in unique:
            unique.append(message)
    return unique


def extract_external_id(body: Dict[str, Any]) -> Optional[str]:
    for key in ("id", "postId", "scheduleId"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    for key in ("posts", "postIds"):
        items = body.get(key)
        if isinstance(items, list) and items:
            first = items[0]
            if isinstance(first, dict) and isinstance(first.get("id"), str) and first["id"]:
                return first["id"]
            if isinstance(first, str) and first:
                return first
    return None


def is_application_failure(body: Dict[str, Any]) -> bool:
    if str(body.get("status") or "").lower() == "error":
        return True
    posts = body.get("posts")
    if isinstance(posts, list):
        return any(isinstance(item, dict) and str(item.get("status") or "").lower() == "error" for item in posts)
    return False


class PublishAdapter:
    def __init__(
        self,
        client: AyrshareClient,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _ensure_configured(self) -> None:
        if not self._client.is_configured:
            raise ConfigurationError("Social posting service is not configured")

    def submit(self, post: Post, credential: str, *, now: Optional[datetime] = None) -> PublishOutcome:
        """Submit one post with its workspace credential. Raises UpstreamError on any failure.

        ``now`` decides whether the schedule time is still ahead; it defaults to the adapter clock.
        """

        self._ensure_configured()
        payload = build_submission_payload(
            caption=post.caption,
            platforms=post.platforms,
            media_urls=post.media_urls,
            scheduled_at=post.scheduled_at,
            now=now or self._clock(),
        )
        final_status = POST_SCHEDULED if "scheduleDate" in payload else POST_POSTED

        try:
            body = self._client.submit_post(payload, profile_key=credential)
        except AyrshareAPIError as exc:
            body = exc.payload
            # The provider sometimes answers non-2xx with a body that reports success.
            if not (str(body.get("status") or "").lower() == "success" and extract_external_id(body)):
                messages = extract_error_messages(body) if body else []
                raise UpstreamError(
                    "; ".join(messages) or str(exc),
                    details={"status_code": exc.status_code},
                ) from exc
            logger.warning("publish_success_despite_http_error", post_id=post.id, status_code=exc.status_code)

        if is_application_failure(body):
            messages = extract_error_messages(body)
            raise UpstreamError("; ".join(messages) or "Failed to post to social platforms")

        external_id = extract_external_id(body)
        if not external_id:
            raise UpstreamError("Social posting service did not return a post id")

        return PublishOutcome(external_id=external_id, final_status=final_status, response=body)

    def delete(self, external_id: str, credential: str) -> bool:
        """Delete a provider post. Returns False when the provider no longer has it."""

        self._ensure_configured()
        try:
            body = self._client.delete_post(external_id, profile_key=credential)
        except AyrshareAPIError as exc:
            if exc.status_code == 404:
                return False
            messages = extract_error_messages(exc.payload) if exc.payload else []
            raise UpstreamError("; ".join(messages) or str(exc), details={"status_code": exc.status_code}) from exc

        if is_application_failure(body):
            raise UpstreamError("; ".join(extract_error_messages(body)) or "Failed to delete post")
        return True

    def history(self, credential: str, *, last_records: int = 50) -> list[Dict[str, Any]]:
        self._ensure_configured()
        try:
            return self._client.get_history(profile_key=credential, last_records=last_records)
        except AyrshareAPIError as exc:
            raise UpstreamError(str(exc), details={"status_code": exc.status_code}) from exc


def get_publish_adapter() -> PublishAdapter:
    return PublishAdapter(get_ayrshare_client())
