"""Provider registry keyed by ``providerType``."""
from typing import Callable

from loguru import logger

from ..config import Settings
from ..scheduler.errors import UnknownProviderError
from .bark import BarkProvider
from .base import PushProvider
from .feishu import FeishuProvider

logger = logger.bind(module="providers.factory")

ProviderBuilder = Callable[[], PushProvider]


class ProviderFactory:
    """Creates and caches one provider instance per type."""

    def __init__(self):
        self._builders: dict[str, ProviderBuilder] = {}
        self._instances: dict[str, PushProvider] = {}

    def register(self, name: str, builder: ProviderBuilder) -> None:
        """Register a provider class (or any zero-argument builder) under a type name."""
        self._builders[name] = builder
        self._instances.pop(name, None)
        logger.debug(f"Registered push provider: {name}")

    def create(self, name: str) -> PushProvider:
        if name not in self._builders:
            raise UnknownProviderError(name)
        if name not in self._instances:
            self._instances[name] = self._builders[name]()
        return self._instances[name]

    def is_supported(self, name: str) -> bool:
        return name in self._builders

    def available_providers(self) -> list[str]:
        return sorted(self._builders)

    @classmethod
    def default(cls, settings: Settings) -> "ProviderFactory":
        """Factory with the built-in Bark and Feishu providers."""
        factory = cls()
        factory.register(
            "bark",
            lambda: BarkProvider(
                default_server=settings.bark_server,
                timeout_seconds=settings.push_timeout_seconds,
            ),
        )
        factory.register("feishu", lambda: FeishuProvider(timeout_seconds=settings.push_timeout_seconds))
        return factory
