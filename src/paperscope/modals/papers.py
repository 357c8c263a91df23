"""Paper views: analysis detail, screenshots and multi-paper comparison."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from rich.markup import escape as escape_markup
from rich.text import Text
from textual import on
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, DataTable, Label, Static

from paperscope.models import (
    ANALYSIS_FIELD_LABELS,
    ANALYSIS_FIELDS,
    ComparisonResult,
    PaperRecord,
    describe_data_uri,
)

# DetailModal results asking the app to open a follow-up dialog
DETAIL_EDIT = "edit"
DETAIL_SCREENSHOTS = "screenshots"


def _format_upload_time(upload_time: int) -> str:
    if upload_time <= 0:
        return "unknown"
    return datetime.fromtimestamp(upload_time / 1000).strftime("%Y-%m-%d %H:%M")


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    return f"{size / 1024:.0f} KB"


def describe_annotation(data_uri: str) -> str:
    """One-line summary of a screenshot: its image type and size."""
    mime_type, size = describe_data_uri(data_uri)
    return f"{mime_type}, {_format_size(size)}"


def render_detail_markup(record: PaperRecord) -> str:
    """Render every analysis field (and unknown extras) as Rich markup."""
    uploaded = _format_upload_time(record.upload_time)
    lines = [
        f"[bold]File:[/] {escape_markup(record.file_name)}"
        f"  ({record.file_size / 1024:.0f} KB, uploaded {uploaded})",
        f"[bold]Status:[/] {record.analysis_status}   [bold]Sync:[/] {record.sync_status}",
    ]
    if record.tags:
        lines.append(f"[bold]Tags:[/] {escape_markup(', '.join(record.tags))}")
    if record.annotations:
        lines.append(f"[bold]Screenshots:[/] {len(record.annotations)} attached")
        for number, data_uri in enumerate(record.annotations, start=1):
            lines.append(f"  {number}. {escape_markup(describe_annotation(data_uri))}")
    if record.error_message:
        lines.append(f"[bold red]Error:[/] {escape_markup(record.error_message)}")

    analysis = record.analysis
    if analysis is None:
        return "\n".join(lines)
    for name in ANALYSIS_FIELDS:
        value = analysis.get(name)
        if not value:
            continue
        lines.append("")
        lines.append(f"[bold]{ANALYSIS_FIELD_LABELS[name]}[/]")
        lines.append(escape_markup(value))
    for key, value in analysis.extra.items():
        lines.append("")
        lines.append(f"[bold]{escape_markup(str(key))}[/]")
        lines.append(escape_markup(str(value)))
    return "\n".join(lines)


class DetailModal(ModalScreen[str | None]):
    """Full-screen view of one paper's analysis.

    Dismisses with DETAIL_EDIT or DETAIL_SCREENSHOTS when the user asks to
    edit the analysis or manage screenshots, None otherwise.
    """

    BINDINGS = [
        Binding("e", "edit", "Edit"),
        Binding("i", "screenshots", "Screenshots"),
        Binding("escape", "close", "Close"),
        Binding("q", "close", "Close", show=False),
    ]

    CSS = """
    DetailModal {
        align: center middle;
    }

    #detail-dialog {
        width: 85%;
        height: 85%;
        background: $surface;
        border: tall $accent;
        padding: 0 2;
    }

    #detail-title {
        text-style: bold;
        color: $accent;
        margin-bottom: 1;
    }

    #detail-scroll {
        height: 1fr;
    }

    #detail-footer {
        color: $text-muted;
    }
    """

    def __init__(self, record: PaperRecord) -> None:
        super().__init__()
        self._record = record

    def compose(self) -> ComposeResult:
        with Vertical(id="detail-dialog"):
            yield Label(escape_markup(self._record.display_title), id="detail-title")
            with VerticalScroll(id="detail-scroll"):
                yield Static(render_detail_markup(self._record), id="detail-body")
            yield Static("Edit: e  Screenshots: i  Close: Esc / q", id="detail-footer")

    def action_edit(self) -> None:
        if self._record.analysis is None:
            self.notify("Only analyzed papers can be edited", severity="warning")
            return
        self.dismiss(DETAIL_EDIT)

    def action_screenshots(self) -> None:
        if not self._record.annotations:
            self.notify("No screenshots attached", severity="warning")
            return
        self.dismiss(DETAIL_SCREENSHOTS)

    def action_close(self) -> None:
        self.dismiss(None)


@dataclass(slots=True)
class ScreenshotAction:
    """What to do with one screenshot: ``open`` it or ``remove`` it."""

    kind: Literal["open", "remove"]
    index: int


class ScreenshotsModal(ModalScreen[ScreenshotAction | None]):
    """List a paper's screenshots; open one in the image viewer or remove it."""

    BINDINGS = [
        Binding("o", "open", "Open"),
        Binding("d", "remove", "Remove"),
        Binding("escape", "close", "Close"),
    ]

    CSS = """
    ScreenshotsModal {
        align: center middle;
    }

    #shots-dialog {
        width: 60%;
        height: 60%;
        min-width: 44;
        background: $surface;
        border: tall $accent;
        padding: 0 2;
    }

    #shots-title {
        text-style: bold;
        color: $accent;
        margin-bottom: 1;
    }

    #shots-table {
        height: 1fr;
    }

    #shots-footer {
        color: $text-muted;
    }
    """

    def __init__(self, paper_title: str, annotations: tuple[str, ...]) -> None:
        super().__init__()
        self._paper_title = paper_title
        self._annotations = annotations

    def compose(self) -> ComposeResult:
        with Vertical(id="shots-dialog"):
            yield Label(
                f"Screenshots for {escape_markup(self._paper_title[:60])}", id="shots-title"
            )
            yield DataTable(id="shots-table", cursor_type="row", zebra_stripes=True)
            yield Static("Open: o / Enter  Remove: d  Close: Esc", id="shots-footer")

    def on_mount(self) -> None:
        table = self.query_one("#shots-table", DataTable)
        table.add_columns("#", "Image")
        for number, data_uri in enumerate(self._annotations, start=1):
            table.add_row(str(number), Text(describe_annotation(data_uri)))
        table.focus()

    def _selected_index(self) -> int | None:
        table = self.query_one("#shots-table", DataTable)
        if not table.row_count:
            return None
        return table.cursor_row

    def action_open(self) -> None:
        index = self._selected_index()
        if index is not None:
            self.dismiss(ScreenshotAction(kind="open", index=index))

    def action_remove(self) -> None:
        index = self._selected_index()
        if index is not None:
            self.dismiss(ScreenshotAction(kind="remove", index=index))

    def action_close(self) -> None:
        self.dismiss(None)

    @on(DataTable.RowSelected, "#shots-table")
    def on_row_selected(self) -> None:
        self.action_open()


class ComparisonModal(ModalScreen[None]):
    """Comparison summary plus one row per compared paper."""

    BINDINGS = [
        Binding("escape", "close", "Close"),
    ]

    CSS = """
    ComparisonModal {
        align: center middle;
    }

    #compare-dialog {
        width: 90%;
        height: 85%;
        background: $surface;
        border: tall $primary;
        padding: 0 2;
    }

    #compare-title {
        text-style: bold;
        color: $primary;
        margin-bottom: 1;
    }

    #compare-summary {
        height: auto;
        max-height: 40%;
        margin-bottom: 1;
    }

    #compare-table {
        height: 1fr;
    }

    #compare-buttons {
        height: auto;
        align: right middle;
    }
    """

    def __init__(self, result: ComparisonResult) -> None:
        super().__init__()
        self._result = result

    def compose(self) -> ComposeResult:
        with Vertical(id="compare-dialog"):
            yield Label(f"Comparing {len(self._result.papers)} papers", id="compare-title")
            with VerticalScroll(id="compare-summary"):
                yield Static(escape_markup(self._result.summary))
            yield DataTable(id="compare-table", zebra_stripes=True)
            with Horizontal(id="compare-buttons"):
                yield Button("Close (Esc)", variant="default", id="close-btn")

    def on_mount(self) -> None:
        table = self.query_one("#compare-table", DataTable)
        table.add_columns("Title", "Method", "Framework", "Main Ideas")
        for row in self._result.papers:
            table.add_row(
                Text(row.title), Text(row.method), Text(row.framework), Text(row.main_ideas)
            )

    def action_close(self) -> None:
        self.dismiss(None)

    @on(Button.Pressed, "#close-btn")
    def on_close_pressed(self) -> None:
        self.action_close()
