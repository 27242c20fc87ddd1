#!/usr/bin/env python3
"""
Configuration for the Devantech bridge - constants and environment variables.
"""

import os

# ============================================================================
# MQTT Availability Check
# ============================================================================
try:
    import paho.mqtt.client  # noqa: F401
    MQTT_AVAILABLE = True
except ImportError:
    MQTT_AVAILABLE = False

# ============================================================================
# Helpers
# ============================================================================


def _get_int_env(name: str, default: int) -> int:
    """Return an int env variable with a safe fallback."""
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = str(raw).strip()
    if raw == "" or raw.lower() == "null":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    """Return a float env variable with a safe fallback."""
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = str(raw).strip()
    if raw == "" or raw.lower() == "null":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


# ============================================================================
# MQTT Configuration
# ============================================================================
MQTT_HOST = os.getenv("MQTT_HOST", "core-mosquitto")
MQTT_PORT = _get_int_env("MQTT_PORT", 1883)
MQTT_USERNAME = os.getenv("MQTT_USERNAME", "")
MQTT_PASSWORD = os.getenv("MQTT_PASSWORD", "")
MQTT_NAMESPACE = os.getenv("MQTT_NAMESPACE", "devantech")
MQTT_PUBLISH_QOS = _get_int_env("MQTT_PUBLISH_QOS", 1)
MQTT_CONNECT_TIMEOUT = _get_int_env("MQTT_CONNECT_TIMEOUT", 10)
MQTT_HEALTH_CHECK_INTERVAL = _get_int_env("MQTT_HEALTH_CHECK_INTERVAL", 30)
# Deltas kept in memory while the broker is unreachable
MQTT_OFFLINE_BUFFER = _get_int_env("MQTT_OFFLINE_BUFFER", 1000)

# ============================================================================
# Status Listener Configuration
# ============================================================================
STATUS_LISTEN_HOST = os.getenv("STATUS_LISTEN_HOST", "0.0.0.0")
STATUS_LISTENER_PORT = _get_int_env("STATUS_LISTENER_PORT", 28241)
CLIENT_IP_FILTER = os.getenv("CLIENT_IP_FILTER", ".*")
STATUS_READ_SIZE = 4096

# ============================================================================
# Command Configuration
# ============================================================================
TRANSMIT_QUEUE_HEARTBEAT = _get_int_env("TRANSMIT_QUEUE_HEARTBEAT", 25)  # ms
DEFAULT_DEVICE_ID = os.getenv("DEFAULT_DEVICE_ID", "DS")
DEFAULT_COMMAND_PORT = _get_int_env("DEFAULT_COMMAND_PORT", 17123)
COMMAND_CONNECT_TIMEOUT = _get_float_env("COMMAND_CONNECT_TIMEOUT", 5.0)
COMMAND_ACK_TOKEN = "Ok"

# ============================================================================
# Options File (modules + devices)
# ============================================================================
DATA_DIR = os.getenv("DATA_DIR", "/data")
OPTIONS_PATH = os.getenv(
    "OPTIONS_PATH",
    os.path.join(DATA_DIR, "options.json")
)

# ============================================================================
# Status API
# ============================================================================
STATUS_API_HOST = os.getenv("STATUS_API_HOST", "0.0.0.0")
# 0 disables the HTTP status API
STATUS_API_PORT = _get_int_env("STATUS_API_PORT", 0)

# ============================================================================
# Host bus paths
# ============================================================================
BRIDGE_ID = "devantech"
SWITCHBANK_ROOT = "electrical.switches.bank"
DELTA_CONTEXT = "vessels.self"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
