from .settings import ClockSettings, get_settings

__all__ = ["ClockSettings", "get_settings"]
