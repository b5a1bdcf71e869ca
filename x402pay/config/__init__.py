"""Configuration module for x402pay."""

from x402pay.config.loader import get_config_path, load_settings, save_settings
from x402pay.config.schema import ChainOverride, X402Settings

__all__ = ["ChainOverride", "X402Settings", "get_config_path", "load_settings", "save_settings"]
