"""Push provider interface."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from ..scheduler.models import Device


@dataclass
class PushResult:
    """Outcome of one provider call."""
    success: bool
    message_id: str | None = None
    error: str | None = None
    response: dict[str, Any] | None = None


class PushProvider(ABC):
    """Delivers one message to one device."""

    name: str = ""

    @abstractmethod
    def validate_config(self, config: dict[str, Any]) -> None:
        """Raise ValueError if a device config cannot be used."""

    @abstractmethod
    async def send(self, device: Device, message: dict[str, Any]) -> PushResult:
        """Send a message built by ``Task.message()``."""

    @staticmethod
    def format_message(message: dict[str, Any]) -> dict[str, Any]:
        formatted = dict(message)
        formatted["title"] = (message.get("title") or "提醒").strip()
        formatted["content"] = (message.get("content") or "").strip()
        return formatted
