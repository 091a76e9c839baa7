"""Stripe webhook signature verification and the REST calls used for checkout."""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx

from woozy.core.config import get_settings


@dataclass(frozen=True)
class StripeSignatureHeader:
    timestamp: int
    signatures: List[str]


class StripeWebhookError(ValueError):
    """Raised when a webhook payload or its signature cannot be trusted."""


class StripeAPIError(RuntimeError):
    def __init__(self, message: str, *, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


def parse_signature_header(header: str) -> StripeSignatureHeader:
    timestamp: Optional[int] = None
    signatures: List[str] = []

    for item in (header or "").split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise StripeWebhookError("Invalid Stripe signature timestamp") from exc
        elif key == "v1" and value:
            signatures.append(value)

    if timestamp is None or not signatures:
        raise StripeWebhookError("Invalid Stripe signature header")
    return StripeSignatureHeader(timestamp=timestamp, signatures=signatures)


def compute_signature(secret: str, timestamp: int, payload: bytes) -> str:
    signed_payload = str(timestamp).encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(
    *,
    payload: bytes,
    header: str,
    secret: str,
    tolerance_seconds: int = 300,
    now: Optional[datetime] = None,
) -> None:
    """Check a ``Stripe-Signature`` header. Raises StripeWebhookError when it does not match."""

    if not secret:
        raise StripeWebhookError("Stripe webhook secret is not configured")

    parsed = parse_signature_header(header)
    current = now or datetime.now(timezone.utc)
    if abs(int(current.timestamp()) - parsed.timestamp) > tolerance_seconds:
        raise StripeWebhookError("Stripe signature timestamp outside tolerance window")

    expected = compute_signature(secret, parsed.timestamp, payload)
    if not any(hmac.compare_digest(expected, candidate) for candidate in parsed.signatures):
        raise StripeWebhookError("Stripe signature mismatch")


def parse_event(payload: bytes) -> Dict[str, Any]:
    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise StripeWebhookError("Invalid Stripe JSON payload") from exc

    if not isinstance(event, dict):
        raise StripeWebhookError("Stripe payload must be a JSON object")
    if not event.get("id") or not event.get("type"):
        raise StripeWebhookError("Stripe payload missing required fields: id/type")
    return event


def event_object(event: Dict[str, Any]) -> Dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}


def _flatten_form(prefix: str, value: Any, out: Dict[str, str]) -> None:
    if isinstance(value, dict):
        for key, item in value.items():
            _flatten_form(f"{prefix}[{key}]" if prefix else str(key), item, out)
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _flatten_form(f"{prefix}[{index}]", item, out)
    elif isinstance(value, bool):
        out[prefix] = "true" if value else "false"
    elif value is not None:
        out[prefix] = str(value)


def encode_form(params: Dict[str, Any]) -> Dict[str, str]:
    """Encode nested params the way the Stripe REST API expects (``a[b][0]=c``)."""

    out: Dict[str, str] = {}
    _flatten_form("", params, out)
    return out


class StripeClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.stripe.com/v1",
        timeout_seconds: int = 20,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _post(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if not self._api_key:
            raise StripeAPIError("stripe_api_key_missing")

        url = f"{self._base_url}/{path.lstrip('/')}"
        kwargs: Dict[str, Any] = {
            "headers": {"Authorization": f"Bearer {self._api_key}"},
            "data": encode_form(params),
            "timeout": self._timeout_seconds,
        }
        try:
            if self._client is not None:
                response = self._client.post(url, **kwargs)
            else:
                with httpx.Client() as client:
                    response = client.post(url, **kwargs)
        except httpx.HTTPError as exc:
            raise StripeAPIError(f"Failed to reach Stripe: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            error = body.get("error") if isinstance(body, dict) else None
            message = error.get("message") if isinstance(error, dict) else None
            raise StripeAPIError(
                message or f"stripe_request_failed status={response.status_code}",
                status_code=response.status_code,
            )
        if not isinstance(body, dict):
            raise StripeAPIError("stripe_invalid_payload", status_code=response.status_code)
        return body

    def create_customer(self, *, email: str, name: Optional[str], user_id: str) -> str:
        body = self._post(
            "customers",
            {"email": email, "name": name, "metadata": {"userId": user_id}},
        )
        customer_id = body.get("id")
        if not isinstance(customer_id, str) or not customer_id:
            raise StripeAPIError("stripe_customer_id_missing")
        return customer_id

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> Dict[str, str]:
        body = self._post(
            "checkout/sessions",
            {
                "mode": "subscription",
                "customer": customer_id,
                "line_items": [{"price": price_id, "quantity": 1}],
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": metadata,
                "subscription_data": {"metadata": metadata},
                "allow_promotion_codes": True,
            },
        )
        session_id = str(body.get("id") or "")
        url = str(body.get("url") or "")
        if not session_id or not url:
            raise StripeAPIError("stripe_checkout_response_invalid")
        return {"session_id": session_id, "url": url}

    def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        body = self._post("billing_portal/sessions", {"customer": customer_id, "return_url": return_url})
        url = str(body.get("url") or "")
        if not url:
            raise StripeAPIError("stripe_portal_response_invalid")
        return url


@lru_cache(maxsize=1)
def get_stripe_client() -> StripeClient:
    settings = get_settings()
    return StripeClient(
        api_key=settings.stripe_api_key,
        base_url=settings.stripe_api_base_url,
        timeout_seconds=settings.stripe_api_timeout_seconds,
    )
