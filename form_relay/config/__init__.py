"""
Configuration module.

Usage:
    from form_relay.config import get_settings

    settings = get_settings()
    if settings.signing_enabled:
        ...
"""

from form_relay.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
