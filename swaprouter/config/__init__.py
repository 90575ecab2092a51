"""Configuration module"""

from .models import DEFAULT_TOKENS, ChainConfig, RouterConfig, Settings, TokenConfig

__all__ = ["ChainConfig", "DEFAULT_TOKENS", "RouterConfig", "Settings", "TokenConfig"]
