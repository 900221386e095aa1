"""
WhatsApp Channel Adapter — WhatsApp Business Cloud API client.

Provides:
- Phone number normalization
- Outbound template invocation (name, language, ordered body parameters)
- Outbound free-form text
- Response mapping: provider message id on success, raw error body on failure

Both message shapes go to the same /messages endpoint; only the body differs.
"""
from __future__ import annotations

import json
import re
import structlog
from typing import Any, Optional

import httpx

from config.settings import WhatsAppConfig
from models.schemas import (
    ChannelType, ProviderRequest, ProviderResult, TemplateRequest, TextRequest,
)
from channels.base import ProviderClient, ProviderNotConfiguredError, ProviderTransportError

logger = structlog.get_logger()


def normalize_phone(phone: Optional[str]) -> str:
    """Normalize phone to digits only, stripping +, spaces, dashes."""
    if not isinstance(phone, str):
        return ""
    return re.sub(r"[^\d]", "", phone)


class WhatsAppCloudClient(ProviderClient):
    """WhatsApp Business Cloud API client with bearer-token authentication."""

    channel_type = ChannelType.WHATSAPP

    def __init__(
        self,
        access_token: str,
        phone_number_id: str,
        api_version: str = "v22.0",
        base_url: str = "https://graph.facebook.com",
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self._access_token = access_token
        self._phone_number_id = phone_number_id
        self._api_version = api_version
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(cls, config: WhatsAppConfig, **kwargs) -> WhatsAppCloudClient:
        return cls(
            access_token=config.access_token,
            phone_number_id=config.phone_number_id,
            api_version=config.api_version,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
            **kwargs,
        )

    @property
    def messages_url(self) -> str:
        return f"{self._base_url}/{self._api_version}/{self._phone_number_id}/messages"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=min(self._timeout, 10.0)),
                headers={
                    "Authorization": f"Bearer {self._access_token}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    # ── Request bodies ────────────────────────────────────────

    @staticmethod
    def build_body(request: ProviderRequest) -> dict[str, Any]:
        if isinstance(request, TemplateRequest):
            return {
                "messaging_product": "whatsapp",
                "to": request.to,
                "type": "template",
                "template": {
                    "name": request.template_name,
                    "language": {"code": request.language},
                    "components": [
                        {
                            "type": "body",
                            "parameters": [
                                {"type": "text", "text": value} for value in request.parameters
                            ],
                        }
                    ],
                },
            }
        if isinstance(request, TextRequest):
            return {
                "messaging_product": "whatsapp",
                "to": request.to,
                "type": "text",
                "text": {"body": request.body},
            }
        raise TypeError(f"Unsupported provider request: {type(request).__name__}")

    # ── Send ──────────────────────────────────────────────────

    async def _do_send(self, request: ProviderRequest) -> ProviderResult:
        if not self._access_token or not self._phone_number_id:
            raise ProviderNotConfiguredError(self.channel_type.value)

        body = self.build_body(request)
        client = await self._get_client()
        try:
            resp = await client.post(self.messages_url, json=body)
        except httpx.TimeoutException as e:
            raise ProviderTransportError(f"Provider timeout: {e}", self.channel_type.value) from e
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"Provider request failed: {e}", self.channel_type.value) from e

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = None

        if resp.is_success:
            msg_id = self._extract_message_id(data)
            logger.info("whatsapp_message_sent",
                        to=request.to, kind=request.kind, msg_id=msg_id)
            return ProviderResult(ok=True, provider_message_id=msg_id, status_code=resp.status_code)

        error = json.dumps(data) if data is not None else resp.text
        return ProviderResult(ok=False, error=error, status_code=resp.status_code)

    @staticmethod
    def _extract_message_id(data: Any) -> Optional[str]:
        if not isinstance(data, dict):
            return None
        messages = data.get("messages")
        if isinstance(messages, list) and messages and isinstance(messages[0], dict):
            msg_id = messages[0].get("id")
            return str(msg_id) if msg_id else None
        return None

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
