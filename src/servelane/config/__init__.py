"""Operator configuration."""

from servelane.config.settings import Settings, get_settings, validate_required_settings

__all__ = ["Settings", "get_settings", "validate_required_settings"]
