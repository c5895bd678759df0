"""Default lifecycle, transport and backend settings."""

DEFAULT_BACKEND_URL = "http://127.0.0.1:5000/api/whatsapp"

DEFAULT_CHANNEL_CONFIG = {
    "backend_url": DEFAULT_BACKEND_URL,
    "push_mode": "sse",
    "push_path": "/events",
    "request_timeout": 15.0,
    "command_timeout": 20.0,
    "pairing_timeout": 90.0,
    "auth_timeout": 60.0,
    "poll_interval": 2.0,
    "push_backoff_initial": 1.0,
    "push_backoff_factor": 2.0,
    "push_backoff_max": 30.0,
    "max_poll_failures": 5,
    "max_seen_message_ids": 500,
    "max_feed_messages": 200,
}

PUSH_MODES = ("sse", "websocket")
