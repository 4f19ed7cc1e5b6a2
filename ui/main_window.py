"""Main application window."""

from __future__ import annotations

from PySide6.QtCore import Qt
from PySide6.QtWidgets import QLabel, QMainWindow, QVBoxLayout, QWidget

from core.models import AppSettings
from core.settings import NotReadyError
from ui.styles import get_stylesheet
from ui.viewmodels.settings_viewmodel import SettingsViewModel
from ui.widgets.settings_error_banner import SettingsErrorBanner


class MainWindow(QMainWindow):
    """Main application window."""

    def __init__(self, settings_viewmodel: SettingsViewModel):
        super().__init__()
        self._settings_viewmodel = settings_viewmodel
        self.setWindowTitle("TaskDesk")
        self.resize(960, 640)

        central = QWidget()
        layout = QVBoxLayout(central)
        layout.setContentsMargins(12, 12, 12, 12)
        layout.setSpacing(8)

        self._error_banner = SettingsErrorBanner(self._settings_viewmodel)
        layout.addWidget(self._error_banner)

        self._view_label = QLabel()
        layout.addWidget(self._view_label)
        self._path_label = QLabel()
        self._path_label.setObjectName("mutedLabel")
        self._path_label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
        layout.addWidget(self._path_label)
        layout.addStretch()
        self.setCentralWidget(central)

        self._settings_viewmodel.settings_changed.connect(self.apply_settings)
        self.apply_settings(self._settings_viewmodel.manager.get_settings())

    @property
    def error_banner(self) -> SettingsErrorBanner:
        return self._error_banner

    def apply_settings(self, settings: AppSettings) -> None:
        self.setStyleSheet(
            get_stylesheet(settings.app.theme, settings.ui.font_family, settings.ui.font_size)
        )
        on_top = bool(self.windowFlags() & Qt.WindowType.WindowStaysOnTopHint)
        if on_top != settings.app.always_on_top:
            self.setWindowFlag(Qt.WindowType.WindowStaysOnTopHint, settings.app.always_on_top)
            if self.isVisible():
                self.show()
        self._view_label.setText(f"Startup view: {settings.app.startup_view}")
        try:
            self._path_label.setText(str(self._settings_viewmodel.manager.get_settings_path()))
        except NotReadyError:
            self._path_label.setText("Settings unavailable")
