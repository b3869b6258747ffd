"""Local engine for Refoss EM01P/EM06P/EM16P energy monitors."""

from __future__ import annotations

from .api import RefossRESTClient
from .availability import AvailabilityTracker
from .backend.ws_rpc import RpcSocketClient
from .codecs.status_codec import PushEvent, StatusNormalizer, parse_notify_status
from .config import ConnectionSettings
from .coordinator import (
    ConnectionState,
    CoordinatorState,
    FreshnessCoordinator,
    HostDevice,
)
from .domain.telemetry import ChannelReading, ChannelTotals, DeviceTelemetry
from .errors import RefossError
from .push_server import HandlerRegistry, PushDispatchServer
from .webhooks import WebhookRegistrar, WebhookSubscription

__all__ = [
    "AvailabilityTracker",
    "ChannelReading",
    "ChannelTotals",
    "ConnectionSettings",
    "ConnectionState",
    "CoordinatorState",
    "DeviceTelemetry",
    "FreshnessCoordinator",
    "HandlerRegistry",
    "HostDevice",
    "PushDispatchServer",
    "PushEvent",
    "RefossError",
    "RefossRESTClient",
    "RpcSocketClient",
    "StatusNormalizer",
    "WebhookRegistrar",
    "WebhookSubscription",
    "parse_notify_status",
]
