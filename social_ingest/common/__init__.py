from .http_client import create_source_client, USER_AGENT_BOT
from .rate_limit import delay_window, jittered_delay, backoff_delay

__all__ = ["create_source_client", "USER_AGENT_BOT", "delay_window", "jittered_delay", "backoff_delay"]
