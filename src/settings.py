"""Static configuration for meshwatch.

All user-editable settings (broker, keys, dedup, grouping, filters,
notifications) live in a single JSON file for quick edits without touching
Python. Secrets stay in the environment.
"""

import json
import os

from meshtastic.protobuf import portnums_pb2

from core.node_ids import normalize_node_hex, normalize_node_set

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Config path can be overridden to run several instances from one checkout.
CONFIG_PATH = os.getenv("MESHWATCH_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_portnums(names: list[str]) -> frozenset[int]:
    """Map port names such as TEXT_MESSAGE_APP to their numeric values."""

    return frozenset(portnums_pb2.PortNum.Value(name) for name in names)


def _normalize_node_map(raw_map: dict, keep_default: bool = False) -> dict[str, str]:
    """Normalize node-id keys of a node -> value map, dropping invalid ids."""

    normalized: dict[str, str] = {}
    for raw_id, value in raw_map.items():
        if keep_default and raw_id == "default":
            normalized[raw_id] = value
            continue
        node_hex = normalize_node_hex(raw_id)
        if node_hex:
            normalized[node_hex] = value
    return normalized


_CONFIG = _load_json_config()

# Where to store the SQLite node directory.
NODE_DB_PATH = _CONFIG.get("node_db_path") or os.path.join(os.path.dirname(__file__), "meshwatch.db")

# Broker connection. Credentials come from the environment (see app.py).
_mqtt = _CONFIG.get("mqtt", {})
MQTT_HOST = _mqtt.get("host", "mqtt.bayme.sh")
MQTT_PORT = int(_mqtt.get("port", 1883))
MQTT_CLIENT_ID = _mqtt.get("client_id")
MQTT_TOPICS = tuple(_mqtt.get("topics", ["msh/#"]))
MQTT_KEEPALIVE = int(_mqtt.get("keepalive", 60))

# Ordered channel keys; the first key that yields a valid payload wins.
DECRYPTION_KEYS = list(_CONFIG.get("decryption_keys", ["1PG7OiApB1nwvP+rz05pAQ=="]))

# Deduplication controls.
# - DEDUP_MODE: "per_gateway", "per_packet" or "off"
# - DEDUP_CAPACITY: keys remembered before the oldest is forgotten
_dedup = _CONFIG.get("dedup", {})
DEDUP_MODE = _dedup.get("mode", "per_gateway")
DEDUP_CAPACITY = int(_dedup.get("capacity", 1000))

# Grouping window and how often completed groups are drained.
_grouping = _CONFIG.get("grouping", {})
GROUPING_DURATION_SECONDS = float(_grouping.get("duration_seconds", 10))
DRAIN_INTERVAL_SECONDS = float(_grouping.get("drain_interval_seconds", 5))
GROUPED_PORTNUMS = _resolve_portnums(_grouping.get("portnums", ["TEXT_MESSAGE_APP"]))

# Dispatch-side filters.
_filters = _CONFIG.get("filters", {})
IGNORE_NODES = normalize_node_set(_filters.get("ignore_nodes", []))
STALE_AFTER_SECONDS = int(_filters.get("stale_after_seconds", 300))
SUPPRESS_RULES_CONFIG = _filters.get(
    "suppress",
    [{"name": "range-test", "regex": [r"^seq \d+$"]}],
)

# Notification method switches adapters without changing core logic.
_notifications = _CONFIG.get("notifications", {})
NOTIFICATION_METHOD = _notifications.get("notification_method", "discord")
CHANNEL_WEBHOOKS = dict(_notifications.get("channel_webhooks", {}))
AVATARS = _normalize_node_map(_notifications.get("avatars", {}), keep_default=True)
WEBHOOK_USERNAME = _notifications.get("username")
# Bot chat id is only required when notification_method=bot.
BOT_CHAT_ID = _notifications.get("bot_chat_id")

# Names to seed into the node directory before any node info arrives.
NODE_NAMES = _normalize_node_map(_CONFIG.get("nodes", {}))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
