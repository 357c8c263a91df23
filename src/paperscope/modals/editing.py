"""Editing modals: adding papers, tags, analysis fields, model settings."""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path

from rich.markup import escape as escape_markup
from textual import on
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Select, Switch, TextArea

from paperscope.models import (
    ANALYSIS_FIELD_LABELS,
    ANALYSIS_FIELDS,
    AnalysisResult,
    LLMSettings,
    parse_tag_input,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AddPapersRequest:
    """What the user picked in the add-papers dialog."""

    paths: list[Path]
    tags: tuple[str, ...]


def parse_path_input(text: str) -> list[Path]:
    """Split shell-style path input; quotes keep paths with spaces together."""
    try:
        parts = shlex.split(text)
    except ValueError:
        parts = text.split()
    return [Path(p).expanduser() for p in parts if p.strip()]


class AddPapersModal(ModalScreen[AddPapersRequest | None]):
    """Modal dialog for picking PDFs to upload, with initial tags."""

    BINDINGS = [
        Binding("ctrl+s", "save", "Add"),
        Binding("escape", "cancel", "Cancel"),
    ]

    CSS = """
    AddPapersModal {
        align: center middle;
    }

    #add-dialog {
        width: 70%;
        height: auto;
        min-width: 50;
        background: $surface;
        border: tall $success;
        padding: 0 2;
    }

    #add-title {
        text-style: bold;
        color: $success;
        margin-bottom: 1;
    }

    .add-help {
        color: $text-muted;
    }

    #add-paths, #add-tags {
        width: 100%;
        margin-bottom: 1;
    }

    #add-buttons {
        height: auto;
        align: right middle;
    }

    #add-buttons Button {
        margin-left: 1;
    }
    """

    def __init__(self, default_tags: tuple[str, ...] = ()) -> None:
        super().__init__()
        self._default_tags = default_tags

    def compose(self) -> ComposeResult:
        with Vertical(id="add-dialog"):
            yield Label("Add papers", id="add-title")
            yield Label(
                "PDF paths, separated by spaces (quote paths with spaces)", classes="add-help"
            )
            yield Input(placeholder="~/papers/attention.pdf ...", id="add-paths")
            yield Label("Initial tags (comma-separated, optional)", classes="add-help")
            yield Input(
                value=", ".join(self._default_tags), placeholder="ml, to-read", id="add-tags"
            )
            with Horizontal(id="add-buttons"):
                yield Button("Cancel", variant="default", id="cancel-btn")
                yield Button("Add (Ctrl+S)", variant="primary", id="save-btn")

    def on_mount(self) -> None:
        self.query_one("#add-paths", Input).focus()

    def action_save(self) -> None:
        paths = parse_path_input(self.query_one("#add-paths", Input).value)
        if not paths:
            self.notify("Enter at least one PDF path", severity="warning")
            return
        tags = parse_tag_input(self.query_one("#add-tags", Input).value)
        self.dismiss(AddPapersRequest(paths=paths, tags=tags))

    def action_cancel(self) -> None:
        self.dismiss(None)

    @on(Button.Pressed, "#save-btn")
    def on_save_pressed(self) -> None:
        self.action_save()

    @on(Button.Pressed, "#cancel-btn")
    def on_cancel_pressed(self) -> None:
        self.action_cancel()

    @on(Input.Submitted)
    def on_input_submitted(self) -> None:
        self.action_save()


class TagsModal(ModalScreen[tuple[str, ...] | None]):
    """Modal dialog for editing paper tags."""

    BINDINGS = [
        Binding("ctrl+s", "save", "Save"),
        Binding("escape", "cancel", "Cancel"),
    ]

    CSS = """
    TagsModal {
        align: center middle;
    }

    #tags-dialog {
        width: 50%;
        height: auto;
        min-width: 40;
        background: $surface;
        border: tall $success;
        padding: 0 2;
    }

    #tags-title {
        text-style: bold;
        color: $success;
        margin-bottom: 1;
    }

    #tags-suggestions {
        color: $text-muted;
        margin-bottom: 1;
    }

    #tags-input {
        width: 100%;
    }

    #tags-buttons {
        height: auto;
        margin-top: 1;
        align: right middle;
    }

    #tags-buttons Button {
        margin-left: 1;
    }
    """

    def __init__(
        self,
        paper_title: str,
        current_tags: tuple[str, ...] = (),
        all_tags: list[str] | None = None,
    ) -> None:
        super().__init__()
        self._paper_title = paper_title
        self._current_tags = current_tags
        self._all_tags = all_tags or []

    def compose(self) -> ComposeResult:
        with Vertical(id="tags-dialog"):
            yield Label(f"Tags for {escape_markup(self._paper_title[:60])}", id="tags-title")
            if self._all_tags:
                yield Label(
                    f"Existing: {escape_markup(', '.join(self._all_tags))}",
                    id="tags-suggestions",
                )
            yield Input(
                value=", ".join(self._current_tags),
                placeholder="Enter tags...",
                id="tags-input",
            )
            with Horizontal(id="tags-buttons"):
                yield Button("Cancel", variant="default", id="cancel-btn")
                yield Button("Save (Ctrl+S)", variant="primary", id="save-btn")

    def on_mount(self) -> None:
        self.query_one("#tags-input", Input).focus()

    def action_save(self) -> None:
        self.dismiss(parse_tag_input(self.query_one("#tags-input", Input).value))

    def action_cancel(self) -> None:
        self.dismiss(None)

    @on(Button.Pressed, "#save-btn")
    def on_save_pressed(self) -> None:
        self.action_save()

    @on(Button.Pressed, "#cancel-btn")
    def on_cancel_pressed(self) -> None:
        self.action_cancel()

    @on(Input.Submitted, "#tags-input")
    def on_input_submitted(self) -> None:
        self.action_save()


@dataclass(slots=True)
class AnalysisEdit:
    """One edited analysis field."""

    field: str
    text: str


class EditAnalysisModal(ModalScreen[AnalysisEdit | None]):
    """Modal dialog for correcting one field of a finished analysis."""

    BINDINGS = [
        Binding("ctrl+s", "save", "Save"),
        Binding("escape", "cancel", "Cancel"),
    ]

    CSS = """
    EditAnalysisModal {
        align: center middle;
    }

    #edit-dialog {
        width: 70%;
        height: 70%;
        min-width: 50;
        min-height: 15;
        background: $surface;
        border: tall $accent;
        padding: 0 2;
    }

    #edit-title {
        text-style: bold;
        color: $accent;
        margin-bottom: 1;
    }

    #edit-field {
        width: 100%;
        margin-bottom: 1;
    }

    #edit-textarea {
        height: 1fr;
        border: none;
    }

    #edit-textarea:focus {
        border-left: tall $accent;
    }

    #edit-buttons {
        height: auto;
        margin-top: 1;
        align: right middle;
    }

    #edit-buttons Button {
        margin-left: 1;
    }
    """

    def __init__(
        self, paper_title: str, analysis: AnalysisResult, field: str = "problem"
    ) -> None:
        super().__init__()
        self._paper_title = paper_title
        self._analysis = analysis
        self._field = field if field in ANALYSIS_FIELDS else ANALYSIS_FIELDS[0]

    @property
    def current_field(self) -> str:
        return self._field

    def compose(self) -> ComposeResult:
        with Vertical(id="edit-dialog"):
            yield Label(f"Edit {escape_markup(self._paper_title[:60])}", id="edit-title")
            yield Select(
                [(ANALYSIS_FIELD_LABELS[name], name) for name in ANALYSIS_FIELDS],
                value=self._field,
                allow_blank=False,
                id="edit-field",
            )
            yield TextArea(self._analysis.get(self._field), id="edit-textarea")
            with Horizontal(id="edit-buttons"):
                yield Button("Cancel", variant="default", id="cancel-btn")
                yield Button("Save (Ctrl+S)", variant="primary", id="save-btn")

    def on_mount(self) -> None:
        self.query_one("#edit-textarea", TextArea).focus()

    @on(Select.Changed, "#edit-field")
    def on_field_changed(self, event: Select.Changed) -> None:
        if not isinstance(event.value, str) or event.value == self._field:
            return
        self._field = event.value
        self.query_one("#edit-textarea", TextArea).load_text(self._analysis.get(self._field))

    def action_save(self) -> None:
        text = self.query_one("#edit-textarea", TextArea).text
        self.dismiss(AnalysisEdit(field=self._field, text=text))

    def action_cancel(self) -> None:
        self.dismiss(None)

    @on(Button.Pressed, "#save-btn")
    def on_save_pressed(self) -> None:
        self.action_save()

    @on(Button.Pressed, "#cancel-btn")
    def on_cancel_pressed(self) -> None:
        self.action_cancel()


def _parse_positive_int(text: str, default: int) -> int:
    try:
        value = int(text.strip())
    except ValueError:
        return default
    return value if value > 0 else default


def _parse_float(text: str, default: float) -> float:
    try:
        return float(text.strip())
    except ValueError:
        return default


class SettingsModal(ModalScreen[LLMSettings | None]):
    """Edit model settings: managed mode, or an external OpenAI-compatible endpoint."""

    BINDINGS = [
        Binding("ctrl+s", "save", "Save"),
        Binding("escape", "cancel", "Cancel"),
    ]

    CSS = """
    SettingsModal {
        align: center middle;
    }

    #settings-dialog {
        width: 70%;
        height: 80%;
        min-width: 50;
        background: $surface;
        border: tall $accent;
        padding: 0 2;
    }

    #settings-title {
        text-style: bold;
        color: $accent;
        margin-bottom: 1;
    }

    #settings-form {
        height: 1fr;
    }

    .settings-label {
        color: $text-muted;
        margin-top: 1;
    }

    #settings-mode-row {
        height: auto;
    }

    #settings-buttons {
        height: auto;
        margin-top: 1;
        align: right middle;
    }

    #settings-buttons Button {
        margin-left: 1;
    }
    """

    def __init__(self, settings: LLMSettings) -> None:
        super().__init__()
        self._settings = settings

    def compose(self) -> ComposeResult:
        s = self._settings
        with Vertical(id="settings-dialog"):
            yield Label("Model settings", id="settings-title")
            with VerticalScroll(id="settings-form"):
                with Horizontal(id="settings-mode-row"):
                    yield Switch(value=s.use_external, id="settings-external")
                    yield Label(" Use external OpenAI-compatible endpoint")
                yield Label("Base URL (external mode)", classes="settings-label")
                yield Input(value=s.base_url, id="settings-base-url")
                yield Label("API key (external mode)", classes="settings-label")
                yield Input(value=s.api_key, password=True, id="settings-api-key")
                yield Label("Model", classes="settings-label")
                yield Input(value=s.model, id="settings-model")
                yield Label("Temperature", classes="settings-label")
                yield Input(value=str(s.temperature), id="settings-temperature")
                yield Label("Max context window (tokens)", classes="settings-label")
                yield Input(value=str(s.max_context_window), id="settings-context")
                yield Label("Timeout (seconds, external mode)", classes="settings-label")
                yield Input(value=str(s.timeout), id="settings-timeout")
                yield Label("Output language", classes="settings-label")
                yield Input(value=s.language, id="settings-language")
            with Horizontal(id="settings-buttons"):
                yield Button("Cancel", variant="default", id="cancel-btn")
                yield Button("Save (Ctrl+S)", variant="primary", id="save-btn")

    def _value(self, widget_id: str) -> str:
        return self.query_one(f"#{widget_id}", Input).value

    def build_settings(self) -> LLMSettings:
        """Read the form back into settings, keeping old values for unparsable fields."""
        s = self._settings
        return LLMSettings(
            use_external=self.query_one("#settings-external", Switch).value,
            base_url=self._value("settings-base-url").strip() or s.base_url,
            api_key=self._value("settings-api-key").strip(),
            model=self._value("settings-model").strip() or s.model,
            temperature=_parse_float(self._value("settings-temperature"), s.temperature),
            max_context_window=_parse_positive_int(
                self._value("settings-context"), s.max_context_window
            ),
            timeout=_parse_positive_int(self._value("settings-timeout"), s.timeout),
            language=self._value("settings-language").strip() or s.language,
        )

    def action_save(self) -> None:
        self.dismiss(self.build_settings())

    def action_cancel(self) -> None:
        self.dismiss(None)

    @on(Button.Pressed, "#save-btn")
    def on_save_pressed(self) -> None:
        self.action_save()

    @on(Button.Pressed, "#cancel-btn")
    def on_cancel_pressed(self) -> None:
        self.action_cancel()
