"""Ayrshare REST client for posting, deletion, history and profile provisioning."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

import httpx

from woozy.core.config import get_settings


class AyrshareAPIError(RuntimeError):
    """Raised when an Ayrshare call fails at the transport or HTTP level.

    ``status_code`` is 0 for timeouts and network failures. ``payload`` carries the decoded
    response body when one was returned.
    """

    def __init__(self, message: str, *, status_code: int = 0, payload: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class AyrshareClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.ayrshare.com/api",
        timeout_seconds: int = 30,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self, profile_key: Optional[str]) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if profile_key:
            headers["Profile-Key"] = profile_key
        return headers

    def _send(self, client: httpx.Client, method: str, url: str, **kwargs: Any) -> httpx.Response:
        return client.request(method, url, timeout=self._timeout_seconds, **kwargs)

    def _request(
        self,
        method: str,
        path: str,
        *,
        profile_key: Optional[str] = None,
        json_body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not self._api_key:
            raise AyrshareAPIError("ayrshare_api_key_missing")

        url = f"{self._base_url}/{path.lstrip('/')}"
        kwargs: Dict[str, Any] = {"headers": self._headers(profile_key)}
        if json_body is not None:
            kwargs["json"] = json_body
        if params:
            kwargs["params"] = params

        try:
            if self._client is not None:
                response = self._send(self._client, method, url, **kwargs)
            else:
                with httpx.Client() as client:
                    response = self._send(client, method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise AyrshareAPIError("Social posting service timed out") from exc
        except httpx.HTTPError as exc:
            raise AyrshareAPIError(f"Failed to connect to social posting service: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text.strip()[:240]} if response.text.strip() else {}

        if response.status_code < 200 or response.status_code >= 300:
            payload = body if isinstance(body, dict) else {"data": body}
            raise AyrshareAPIError(
                f"ayrshare_request_failed status={response.status_code}",
                status_code=response.status_code,
                payload=payload,
            )
        return body

    def submit_post(self, payload: Dict[str, Any], *, profile_key: str) -> Dict[str, Any]:
        body = self._request("POST", "post", profile_key=profile_key, json_body=payload)
        if not isinstance(body, dict):
            raise AyrshareAPIError("ayrshare_invalid_payload", status_code=200)
        return body

    def delete_post(self, external_id: str, *, profile_key: str) -> Dict[str, Any]:
        body = self._request("DELETE", f"post/{external_id}", profile_key=profile_key)
        return body if isinstance(body, dict) else {}

    def get_history(self, *, profile_key: str, last_records: int = 50) -> list[Dict[str, Any]]:
        body = self._request("GET", "history", profile_key=profile_key, params={"lastRecords": last_records})
        if isinstance(body, list):
            return [item for item in body if isinstance(item, dict)]
        if isinstance(body, dict) and isinstance(body.get("history"), list):
            return [item for item in body["history"] if isinstance(item, dict)]
        return []

    def create_profile(self, *, title: str) -> Tuple[str, Optional[str]]:
        """Create a provider profile and return ``(profile_key, ref_id)``."""

        body = self._request("POST", "profiles/profile", json_body={"title": title or "My Business"})
        profile_key = body.get("profileKey") if isinstance(body, dict) else None
        if not isinstance(profile_key, str) or not profile_key:
            raise AyrshareAPIError("ayrshare_profile_key_missing", status_code=200, payload=body if isinstance(body, dict) else {})
        ref_id = body.get("refId")
        return profile_key, str(ref_id) if ref_id else None


@lru_cache(maxsize=1)
def get_ayrshare_client() -> AyrshareClient:
    settings = get_settings()
    return AyrshareClient(
        api_key=settings.ayrshare_api_key,
        base_url=settings.ayrshare_base_url,
        timeout_seconds=settings.ayrshare_timeout_seconds,
    )
