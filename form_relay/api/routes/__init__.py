"""Route handlers."""

from form_relay.api.routes import health, webhook

__all__ = ["health", "webhook"]
