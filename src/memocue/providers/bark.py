"""Bark (iOS) push provider."""
import asyncio
import time
from typing import Any
from urllib.parse import quote, urlparse

import aiohttp
from loguru import logger

from ..scheduler.models import Device
from .base import PushProvider, PushResult

logger = logger.bind(module="providers.bark")

_LEVELS = {2: "critical", 1: "active"}


class BarkProvider(PushProvider):
    """Sends via ``GET {server}/{key}/{title}/{body}``.

    Devices carry ``{"key": ..., "server": ...}``; the server falls back to
    the configured default.
    """

    name = "bark"

    def __init__(self, default_server: str = "https://api.day.app", timeout_seconds: float = 10.0):
        self.default_server = default_server
        self.timeout_seconds = timeout_seconds

    def validate_config(self, config: dict[str, Any]) -> None:
        if not config.get("key"):
            raise ValueError("Bark config requires a key")
        server = config.get("server") or self.default_server
        parsed = urlparse(server)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Invalid Bark server URL: {server}")

    def build_url(self, config: dict[str, Any], message: dict[str, Any]) -> str:
        server = (config.get("server") or self.default_server).rstrip("/")
        return (
            f"{server}/{quote(config['key'], safe='')}"
            f"/{quote(message['title'], safe='')}/{quote(message['content'], safe='')}"
        )

    @staticmethod
    def build_params(message: dict[str, Any]) -> dict[str, str]:
        params = {"level": _LEVELS.get(message.get("priority") or 0, "passive")}
        sound = message.get("sound")
        if sound and sound != "default":
            params["sound"] = sound
        for key in ("icon", "group", "url"):
            if message.get(key):
                params[key] = str(message[key])
        return params

    async def send(self, device: Device, message: dict[str, Any]) -> PushResult:
        config = device.provider_config
        try:
            self.validate_config(config)
            formatted = self.format_message(message)
            url = self.build_url(config, formatted)

            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(
                    url,
                    params=self.build_params(formatted),
                    headers={"User-Agent": "MemoCue/1.0"},
                ) as resp:
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"Bark push failed for device {device.id}: {e}")
            return PushResult(success=False, error=str(e) or type(e).__name__)

        if isinstance(data, dict) and data.get("code") == 200:
            return PushResult(
                success=True,
                message_id=str(data.get("message") or int(time.time() * 1000)),
                response=data,
            )

        error = data.get("message") if isinstance(data, dict) else None
        return PushResult(success=False, error=error or "Bark push failed", response=data if isinstance(data, dict) else None)
