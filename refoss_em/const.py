"""Constants for the Refoss energy monitor engine."""

from __future__ import annotations

from typing import Final

# Local RPC API
RPC_PREFIX: Final = "/rpc"
DEFAULT_HTTP_PORT: Final = 80
REQUEST_TIMEOUT: Final = 8.0

METHOD_DEVICE_INFO: Final = "Refoss.GetDeviceInfo"
METHOD_EM_STATUS: Final = "Em.Status.Get"
METHOD_EM_DATA: Final = "Em.Data.Get"
METHOD_EM_CONFIG: Final = "Em.Config.Get"
METHOD_WEBHOOK_LIST: Final = "Webhook.List"
METHOD_WEBHOOK_SUPPORTED: Final = "Webhook.Supported.List"
METHOD_WEBHOOK_CREATE: Final = "Webhook.Create"
METHOD_WEBHOOK_DELETE: Final = "Webhook.Delete"

# id=65535 addresses every EM module at once
EM_ALL_MODULES_ID: Final = 65535
EM_DATA_DEFAULT_WINDOW: Final = 24 * 3600

# Websocket RPC
WS_RPC_TIMEOUT: Final = 8.0
WS_CLOSE_GRACE: Final = 0.5
WS_RPC_SOURCE: Final = "refoss-em"

# Webhooks
WEBHOOK_PORT: Final = 8741
WEBHOOK_PATH_PREFIX: Final = "/webhook/"
WEBHOOK_NAME: Final = "refossem"
WEBHOOK_CHANNEL_NAME_FMT: Final = "refossem_ch{cid}"
LEGACY_WEBHOOK_NAMES: Final = frozenset({"homey-refoss"})
LEGACY_WEBHOOK_PREFIXES: Final = ("homeyrefoss",)
WEBHOOK_MAX_HOOKS: Final = 20
DEFAULT_EM_EVENT: Final = "em.status_update"
AGGREGATE_EVENT_PREFIX: Final = "emmerge."
CHANNEL_EVENT_PREFIX: Final = "em."
PREFERRED_AGGREGATE_EVENTS: Final = (
    "emmerge.power_change",
    "emmerge.current_change",
    "emmerge.voltage_change",
)
PREFERRED_CHANNEL_EVENTS: Final = (
    "em.power_change",
    "em.current_change",
    "em.voltage_change",
)
PUSH_METHOD: Final = "NotifyStatus"

# Polling and availability
DEFAULT_POLL_INTERVAL: Final = 10
MIN_POLL_INTERVAL: Final = 5
MAX_POLL_INTERVAL: Final = 300
FALLBACK_POLL_INTERVAL: Final = 60.0
POLL_JITTER_RATIO: Final = 0.10
MIN_EFFECTIVE_INTERVAL: Final = 2.0
POLL_RETRY_DELAY: Final = 0.5
POLL_MAX_CONSEC_FAILS: Final = 3

# Temperature plausibility window in degrees Celsius
TEMPERATURE_MIN: Final = -40.0
TEMPERATURE_MAX: Final = 150.0
