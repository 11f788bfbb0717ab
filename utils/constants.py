"""
PODCASTPI - Constants and Magic Numbers

Centralized location for fixed values used by the Bluetooth controller
and the real-time event feeds. Tunable values live in config.py.
"""

from __future__ import annotations

# =============================================================================
# PROCESS TIMEOUTS (seconds)
# =============================================================================

# bluetoothctl termination before escalating to SIGKILL
BT_TERMINATE_TIMEOUT = 3

# Pause after spawning before the state refresh starts issuing commands
BT_STARTUP_SETTLE = 1.0

# Chunk size for reads from the tool's stdout pipe
PIPE_READ_SIZE = 4096


# =============================================================================
# BLUETOOTH DEVICE DEFAULTS
# =============================================================================

# Signal strength reported when no reading is available (dBm)
DEFAULT_RSSI = -70

# Battery readings outside this range are discarded
BATTERY_MIN = 0
BATTERY_MAX = 100

# Prompt bluetoothctl reprints after every line of output
BT_PROMPT = '[bluetooth]#'


# =============================================================================
# SSE (Server-Sent Events) SETTINGS
# =============================================================================

# Keepalive interval for SSE streams (seconds)
SSE_KEEPALIVE_INTERVAL = 30.0

# Queue get timeout for SSE generators and socket pumps (seconds)
SSE_QUEUE_TIMEOUT = 1.0


# =============================================================================
# QUEUE LIMITS
# =============================================================================

# Maximum number of undelivered events held per subscriber
QUEUE_MAX_SIZE = 1000
