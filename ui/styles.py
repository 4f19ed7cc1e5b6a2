"""Theme styles for the application."""

from PySide6.QtCore import Qt
from PySide6.QtGui import QGuiApplication

# Color Tokens
COLORS = {
    "danger": "#DC2626",
    "danger_fade": "rgba(220, 38, 38, 0.12)",

    # Dark Mode
    "dark": {
        "primary": "#135bec",
        "background": "#101622",
        "surface": "#1e232e",
        "border": "#282e39",
        "text_primary": "#FFFFFF",
        "text_muted": "#9da6b9",
    },

    # Light Mode
    "light": {
        "primary": "#00C2FF",
        "background": "#F3F4F6",
        "surface": "#FFFFFF",
        "border": "#E5E7EB",
        "text_primary": "#1F2937",
        "text_muted": "#6B7280",
    },
}


def resolve_theme(theme: str) -> str:
    """Map the ``auto`` theme onto the platform color scheme."""
    if theme in ("light", "dark"):
        return theme
    app = QGuiApplication.instance()
    if app is not None and app.styleHints().colorScheme() == Qt.ColorScheme.Dark:
        return "dark"
    return "light"


def get_stylesheet(theme: str, font_family: str, font_size: int) -> str:
    """QSS for the main window and the settings error banner."""
    c = COLORS[resolve_theme(theme)]
    p = COLORS

    return f"""
    QWidget {{
        background-color: {c['background']};
        color: {c['text_primary']};
        font-family: {font_family};
        font-size: {font_size}px;
    }}

    QLabel#mutedLabel {{
        color: {c['text_muted']};
    }}

    QFrame#settingsErrorBanner {{
        background-color: {p['danger_fade']};
        border: 1px solid {p['danger']};
        border-radius: 6px;
    }}

    QFrame#settingsErrorBanner QLabel {{
        background-color: transparent;
    }}

    QPushButton {{
        background-color: {c['surface']};
        border: 1px solid {c['border']};
        border-radius: 4px;
        padding: 4px 10px;
    }}

    QPushButton:hover {{
        border-color: {c['primary']};
    }}
    """
