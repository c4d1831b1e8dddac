from loan_channel.core.config import settings, Settings

__all__ = ["settings", "Settings"]
