"""Provider clients for outbound messaging."""
from channels.base import (
    ProviderClient,
    ChannelError,
    ChannelMetrics,
    ProviderTransportError,
    ProviderNotConfiguredError,
)
from channels.whatsapp_adapter import WhatsAppCloudClient, normalize_phone

__all__ = [
    "ProviderClient", "ChannelError", "ChannelMetrics",
    "ProviderTransportError", "ProviderNotConfiguredError",
    "WhatsAppCloudClient", "normalize_phone",
]
