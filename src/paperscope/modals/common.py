"""General-purpose dialogs: confirmation and single-line text input."""

from __future__ import annotations

from rich.markup import escape as escape_markup
from textual import on
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Static

# ============================================================================
# Confirm Modal
# ============================================================================


class ConfirmModal(ModalScreen[bool]):
    """Modal dialog for confirming destructive operations."""

    BINDINGS = [
        Binding("y", "confirm", "Confirm"),
        Binding("n", "cancel", "Cancel"),
        Binding("escape", "cancel", "Cancel"),
    ]

    CSS = """
    ConfirmModal {
        align: center middle;
    }

    #confirm-dialog {
        width: 50%;
        min-width: 40;
        height: auto;
        background: $surface;
        border: tall $warning;
        padding: 0 2;
    }

    #confirm-message {
        text-style: bold;
        margin-bottom: 1;
    }

    #confirm-buttons {
        height: auto;
        align: right middle;
    }

    #confirm-buttons Button {
        margin-left: 1;
    }

    #confirm-footer {
        color: $text-muted;
        margin-top: 1;
    }
    """

    def __init__(self, message: str) -> None:
        super().__init__()
        self._message = message

    def compose(self) -> ComposeResult:
        with Vertical(id="confirm-dialog"):
            yield Label(escape_markup(self._message), id="confirm-message")
            with Horizontal(id="confirm-buttons"):
                yield Button("Confirm (y)", variant="warning", id="confirm-yes")
                yield Button("Cancel (Esc)", variant="default", id="confirm-no")
            yield Static("Confirm: y  Cancel: n / Esc", id="confirm-footer")

    def action_confirm(self) -> None:
        self.dismiss(True)

    def action_cancel(self) -> None:
        self.dismiss(False)

    @on(Button.Pressed, "#confirm-yes")
    def on_yes(self) -> None:
        self.dismiss(True)

    @on(Button.Pressed, "#confirm-no")
    def on_no(self) -> None:
        self.dismiss(False)


# ============================================================================
# Text Input Modal
# ============================================================================


class TextInputModal(ModalScreen[str | None]):
    """Ask for one line of text (a file path, the banner text)."""

    BINDINGS = [
        Binding("escape", "cancel", "Cancel"),
    ]

    CSS = """
    TextInputModal {
        align: center middle;
    }

    #text-input-dialog {
        width: 60%;
        min-width: 44;
        height: auto;
        background: $surface;
        border: tall $accent;
        padding: 0 2;
    }

    #text-input-title {
        text-style: bold;
        color: $accent;
        margin-bottom: 1;
    }

    #text-input-help {
        color: $text-muted;
        margin-bottom: 1;
    }

    #text-input {
        width: 100%;
    }

    #text-input-buttons {
        height: auto;
        margin-top: 1;
        align: right middle;
    }

    #text-input-buttons Button {
        margin-left: 1;
    }
    """

    def __init__(
        self,
        title: str,
        *,
        value: str = "",
        placeholder: str = "",
        help_text: str = "",
    ) -> None:
        super().__init__()
        self._title = title
        self._value = value
        self._placeholder = placeholder
        self._help_text = help_text

    def compose(self) -> ComposeResult:
        with Vertical(id="text-input-dialog"):
            yield Label(escape_markup(self._title), id="text-input-title")
            if self._help_text:
                yield Label(escape_markup(self._help_text), id="text-input-help")
            yield Input(value=self._value, placeholder=self._placeholder, id="text-input")
            with Horizontal(id="text-input-buttons"):
                yield Button("Cancel", variant="default", id="cancel-btn")
                yield Button("OK (Enter)", variant="primary", id="ok-btn")

    def on_mount(self) -> None:
        self.query_one("#text-input", Input).focus()

    def action_submit(self) -> None:
        self.dismiss(self.query_one("#text-input", Input).value)

    def action_cancel(self) -> None:
        self.dismiss(None)

    @on(Input.Submitted, "#text-input")
    def on_input_submitted(self) -> None:
        self.action_submit()

    @on(Button.Pressed, "#ok-btn")
    def on_ok_pressed(self) -> None:
        self.action_submit()

    @on(Button.Pressed, "#cancel-btn")
    def on_cancel_pressed(self) -> None:
        self.action_cancel()
