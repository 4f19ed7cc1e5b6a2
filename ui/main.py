"""
Main entry point for the TaskDesk PySide6 application.
"""

import logging
import sys

from PySide6.QtWidgets import QApplication

from core.config import SettingsOptions
from core.infrastructure.logging_config import configure_logging
from core.settings import InitializationError, PathResolver, SettingsManager
from ui.main_window import MainWindow
from ui.viewmodels.settings_viewmodel import SettingsViewModel

logger = logging.getLogger(__name__)


def main():
    """Main entry point for the application."""
    resolver = PathResolver()
    configure_logging(resolver.resolve())

    app = QApplication(sys.argv)
    app.setApplicationName("TaskDesk")
    app.setOrganizationName("TaskDesk")

    manager = SettingsManager(resolver=resolver, options=SettingsOptions.from_env())
    settings_viewmodel = SettingsViewModel(manager)
    try:
        manager.initialize()
    except InitializationError as exc:
        logger.error("Continuing with default settings: %s", exc)
        settings_viewmodel.report_initialization_error(exc)
    else:
        settings_viewmodel.sync_errors()

    window = MainWindow(settings_viewmodel)
    window.show()

    app.aboutToQuit.connect(settings_viewmodel.dispose)
    app.aboutToQuit.connect(manager.dispose)
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
