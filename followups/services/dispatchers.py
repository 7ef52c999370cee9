"""
Message transports used to deliver follow-up steps.

Every transport exposes ``async send(contact, text) -> DispatchResult`` and
raises DispatchError on failure. The state machine enforces the overall
per-call timeout; transports only retry transient HTTP errors.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Protocol

import httpx

from followups.core.config import settings
from followups.core.exceptions import DispatchError, TransportConfigError
from followups.core.structured_logging import mask_phone
from followups.db.enums import MessageTransport
from followups.services.http_service import (
    EVOLUTION_RETRY,
    WHATSAPP_CLOUD_RETRY,
    RetryPolicy,
    request_with_retries,
)

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"


@dataclass(frozen=True)
class ContactRef:
    """Who a step is sent to."""

    phone: str
    name: str | None = None
    conversation_id: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    external_message_id: str | None


class MessageDispatcher(Protocol):
    async def send(self, contact: ContactRef, text: str) -> DispatchResult: ...


def _digits(phone: str) -> str:
    return "".join(ch for ch in phone if ch.isdigit())


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])[:200]
        if body.get("message"):
            return str(body["message"])[:200]
    return str(body)[:200]


class _HttpDispatcher:
    """Shared client handling for HTTP transports."""

    name = "http"
    retry_policy: RetryPolicy = RetryPolicy()

    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self._client = client
        self._timeout = timeout

    async def _post(self, url: str, *, json: dict, headers: dict) -> httpx.Response:
        async def _do(client: httpx.AsyncClient) -> httpx.Response:
            return await request_with_retries(
                lambda: client.post(url, json=json, headers=headers),
                transport=self.name,
                policy=self.retry_policy,
            )

        try:
            if self._client is not None:
                return await _do(self._client)
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await _do(client)
        except httpx.RequestError as exc:
            raise DispatchError(f"{self.name} request failed: {exc}") from exc

    def _check(self, response: httpx.Response) -> None:
        if response.status_code >= 400:
            raise DispatchError(
                f"{self.name} error {response.status_code}: {_error_detail(response)}"
            )


class WhatsAppCloudDispatcher(_HttpDispatcher):
    """WhatsApp Business Cloud API (Graph API text messages)."""

    name = "whatsapp_cloud"
    retry_policy = WHATSAPP_CLOUD_RETRY

    def __init__(
        self,
        *,
        phone_number_id: str,
        access_token: str,
        api_version: str = "v18.0",
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        super().__init__(client=client, timeout=timeout)
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.api_version = api_version

    async def send(self, contact: ContactRef, text: str) -> DispatchResult:
        url = f"{GRAPH_API_BASE}/{self.api_version}/{self.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": _digits(contact.phone),
            "type": "text",
            "text": {"body": text},
        }
        response = await self._post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {self.access_token}"},
        )
        self._check(response)

        data = response.json()
        messages = data.get("messages") or []
        message_id = messages[0].get("id") if messages else None
        return DispatchResult(external_message_id=message_id)


class EvolutionApiDispatcher(_HttpDispatcher):
    """Evolution API instance (self-hosted WhatsApp Web bridge)."""

    name = "evolution"
    retry_policy = EVOLUTION_RETRY

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        instance: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        super().__init__(client=client, timeout=timeout)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.instance = instance

    async def send(self, contact: ContactRef, text: str) -> DispatchResult:
        url = f"{self.base_url}/message/sendText/{self.instance}"
        response = await self._post(
            url,
            json={"number": _digits(contact.phone), "text": text},
            headers={"apikey": self.api_key},
        )
        self._check(response)

        data = response.json()
        key = data.get("key") if isinstance(data, dict) else None
        message_id = key.get("id") if isinstance(key, dict) else None
        return DispatchResult(external_message_id=message_id)


class DryRunDispatcher:
    """Logs instead of sending. Selected only by MESSAGE_TRANSPORT=dry_run."""

    name = "dry_run"

    async def send(self, contact: ContactRef, text: str) -> DispatchResult:
        logger.info(
            "[DRY RUN] Follow-up send skipped for contact=%s (%d chars)",
            mask_phone(contact.phone),
            len(text),
        )
        return DispatchResult(external_message_id=f"dry-run-{uuid.uuid4().hex[:12]}")


def get_dispatcher() -> MessageDispatcher:
    """Build the transport selected by MESSAGE_TRANSPORT."""
    transport = settings.MESSAGE_TRANSPORT
    timeout = settings.DISPATCH_TIMEOUT_SECONDS

    if transport == MessageTransport.WHATSAPP_CLOUD.value:
        if settings.whatsapp_configured:
            return WhatsAppCloudDispatcher(
                phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
                access_token=settings.WHATSAPP_ACCESS_TOKEN,
                api_version=settings.WHATSAPP_API_VERSION,
                timeout=timeout,
            )
        raise TransportConfigError(
            "MESSAGE_TRANSPORT=whatsapp_cloud requires WHATSAPP_PHONE_NUMBER_ID and WHATSAPP_ACCESS_TOKEN"
        )
    elif transport == MessageTransport.EVOLUTION.value:
        if settings.evolution_configured:
            return EvolutionApiDispatcher(
                base_url=settings.EVOLUTION_API_URL,
                api_key=settings.EVOLUTION_API_KEY,
                instance=settings.EVOLUTION_INSTANCE,
                timeout=timeout,
            )
        raise TransportConfigError(
            "MESSAGE_TRANSPORT=evolution requires EVOLUTION_API_URL, EVOLUTION_API_KEY and EVOLUTION_INSTANCE"
        )
    elif transport == MessageTransport.DRY_RUN.value:
        return DryRunDispatcher()

    raise TransportConfigError(f"Unknown MESSAGE_TRANSPORT={transport!r}")
