"""Application-wide constants for the messaging core."""

from __future__ import annotations

BRAND_NAME = "QA Chat"
API_VERSION = "1.0.0"

# Realtime endpoint path (mounted under /api/v1)
REALTIME_WS_PATH = "/realtime/ws"

# Text constraints
MAX_MESSAGE_LENGTH = 2000
MAX_EMOJI_LENGTH = 16
MAX_MUTE_REASON_LENGTH = 255

# Query limits
DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 100

# Conversation key prefixes
DIRECT_KEY_PREFIX = "dm"
CHANNEL_KEY_PREFIX = "ch"

# Broadcast channels
PRESENCE_CHANNEL = "presence"
