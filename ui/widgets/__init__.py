"""UI Widgets package."""

from ui.widgets.settings_error_banner import SettingsErrorBanner

__all__ = ["SettingsErrorBanner"]
