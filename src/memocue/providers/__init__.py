"""Push providers."""
from .base import PushProvider, PushResult
from .bark import BarkProvider
from .feishu import FeishuProvider, generate_signature
from .factory import ProviderFactory

__all__ = [
    "PushProvider",
    "PushResult",
    "BarkProvider",
    "FeishuProvider",
    "generate_signature",
    "ProviderFactory",
]
