"""Configuration for TableKeeper."""

from tablekeeper.config.automation import AutomationConfig, get_automation_config
from tablekeeper.config.settings import Settings, get_settings

__all__ = ["AutomationConfig", "Settings", "get_automation_config", "get_settings"]
