"""Banner listing settings file errors with a confirm-before-fix flow."""

from __future__ import annotations

from typing import Optional

from PySide6.QtCore import Qt
from PySide6.QtWidgets import (
    QFrame,
    QHBoxLayout,
    QLabel,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from ui.viewmodels.settings_viewmodel import SettingsFileError, SettingsViewModel


class SettingsErrorBanner(QFrame):
    """Shows the first pending settings error; hidden when there is none."""

    def __init__(self, viewmodel: SettingsViewModel, parent: Optional[QWidget] = None):
        super().__init__(parent)
        self._viewmodel = viewmodel
        self._error: Optional[SettingsFileError] = None
        self.setObjectName("settingsErrorBanner")
        self.setAttribute(Qt.WidgetAttribute.WA_StyledBackground, True)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(12, 8, 12, 8)
        layout.setSpacing(6)

        self._message_label = QLabel()
        self._message_label.setWordWrap(True)
        layout.addWidget(self._message_label)

        self._detail_label = QLabel()
        self._detail_label.setObjectName("mutedLabel")
        self._detail_label.setWordWrap(True)
        layout.addWidget(self._detail_label)

        actions = QHBoxLayout()
        actions.addStretch()
        self._fix_btn = QPushButton("Auto-fix…")
        self._fix_btn.clicked.connect(self._on_fix_clicked)
        actions.addWidget(self._fix_btn)
        self._dismiss_btn = QPushButton("Dismiss")
        self._dismiss_btn.clicked.connect(self._on_dismiss_clicked)
        actions.addWidget(self._dismiss_btn)
        layout.addLayout(actions)

        self._confirm_row = QWidget()
        confirm_layout = QHBoxLayout(self._confirm_row)
        confirm_layout.setContentsMargins(0, 0, 0, 0)
        self._confirm_label = QLabel("A backup is saved before the file is changed. Apply the fix?")
        self._confirm_label.setWordWrap(True)
        confirm_layout.addWidget(self._confirm_label, 1)
        self._apply_btn = QPushButton("Apply")
        self._apply_btn.clicked.connect(self._on_apply_clicked)
        confirm_layout.addWidget(self._apply_btn)
        self._cancel_btn = QPushButton("Cancel")
        self._cancel_btn.clicked.connect(self._hide_confirm)
        confirm_layout.addWidget(self._cancel_btn)
        layout.addWidget(self._confirm_row)

        self._viewmodel.errors_changed.connect(self.refresh)
        self._viewmodel.auto_fix_finished.connect(self._on_auto_fix_finished)
        self.refresh()

    @property
    def current_error(self) -> Optional[SettingsFileError]:
        return self._error

    def is_confirming(self) -> bool:
        return not self._confirm_row.isHidden()

    def refresh(self) -> None:
        self._error = self._viewmodel.current_error()
        self._hide_confirm()
        if self._error is None:
            self.hide()
            return

        self._message_label.setText(self._error.user_message)
        location = self._error.file_name or ""
        if self._error.line is not None:
            location = f"{location}:{self._error.line}"
        self._detail_label.setText(location)
        self._detail_label.setVisible(bool(location))
        self._fix_btn.setVisible(self._error.can_auto_fix)
        self.show()

    def _on_fix_clicked(self) -> None:
        self._fix_btn.setEnabled(False)
        self._confirm_row.show()

    def _hide_confirm(self) -> None:
        self._confirm_row.hide()
        self._fix_btn.setEnabled(True)

    def _on_apply_clicked(self) -> None:
        if self._error is None:
            return
        self._hide_confirm()
        self._viewmodel.request_auto_fix(self._error.kind)

    def _on_dismiss_clicked(self) -> None:
        if self._error is not None:
            self._viewmodel.dismiss_error(self._error.kind)

    def _on_auto_fix_finished(self, success: bool, detail: str) -> None:
        if not success:
            self._detail_label.setText(f"Auto-fix failed: {detail}")
            self._detail_label.show()
