"""Feishu (Lark) custom-bot webhook provider."""
import asyncio
import base64
import hashlib
import hmac
import time
from typing import Any
from urllib.parse import urlparse

import aiohttp
from loguru import logger

from ..scheduler.models import Device
from .base import PushProvider, PushResult

logger = logger.bind(module="providers.feishu")


def generate_signature(timestamp: int, secret: str) -> str:
    """Bot signature: HMAC-SHA256 of ``"{timestamp}\\n{secret}"`` keyed by the secret, base64."""
    string_to_sign = f"{timestamp}\n{secret}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), string_to_sign, digestmod=hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


class FeishuProvider(PushProvider):
    """Posts text or rich-text (``msgType: "post"``) messages to a bot webhook."""

    name = "feishu"

    def __init__(self, timeout_seconds: float = 10.0):
        self.timeout_seconds = timeout_seconds

    def validate_config(self, config: dict[str, Any]) -> None:
        webhook_url = config.get("webhookUrl")
        if not webhook_url:
            raise ValueError("Feishu config requires webhookUrl")
        parsed = urlparse(webhook_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid Feishu webhook URL: {webhook_url}")
        if "feishu.cn" not in parsed.netloc and "larksuite.com" not in parsed.netloc:
            logger.warning(f"Webhook URL may not be a Feishu URL: {webhook_url}")
        if config.get("secret") is not None and not isinstance(config["secret"], str):
            raise ValueError("Feishu secret must be a string")

    @staticmethod
    def build_text_message(message: dict[str, Any]) -> dict[str, Any]:
        return {
            "msg_type": "text",
            "content": {"text": f"{message['title']}\n{message['content']}"},
        }

    @staticmethod
    def build_post_message(message: dict[str, Any]) -> dict[str, Any]:
        elements = [[{"tag": "text", "text": message["title"], "style": {"bold": True}}]]
        if message.get("content"):
            elements.append([{"tag": "text", "text": message["content"]}])
        if message.get("url"):
            elements.append([{"tag": "a", "text": "查看详情", "href": message["url"]}])
        return {
            "msg_type": "post",
            "content": {"post": {"zh_cn": {"title": message["title"], "content": elements}}},
        }

    def build_payload(self, config: dict[str, Any], message: dict[str, Any]) -> dict[str, Any]:
        if config.get("msgType") == "post":
            payload = self.build_post_message(message)
        else:
            payload = self.build_text_message(message)

        if config.get("secret"):
            timestamp = int(time.time())
            payload["timestamp"] = str(timestamp)
            payload["sign"] = generate_signature(timestamp, config["secret"])
        return payload

    async def send(self, device: Device, message: dict[str, Any]) -> PushResult:
        config = device.provider_config
        try:
            self.validate_config(config)
            payload = self.build_payload(config, self.format_message(message))

            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(config["webhookUrl"], json=payload) as resp:
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Feishu push failed for device {device.id}: {e}")
            return PushResult(success=False, error=str(e) or type(e).__name__)

        if not isinstance(data, dict):
            return PushResult(success=False, error="Unexpected Feishu response")
        if data.get("code") == 0 or data.get("StatusCode") == 0:
            return PushResult(
                success=True,
                message_id=str(int(time.time() * 1000)),
                response=data,
            )
        return PushResult(
            success=False,
            error=data.get("msg") or data.get("StatusMessage") or "Feishu push failed",
            response=data,
        )
