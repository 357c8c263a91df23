"""Internal UI constants for the PaperScope app."""

from __future__ import annotations

from textual.binding import Binding, BindingType

APP_CSS = """
Screen {
    background: $background;
}

#banner {
    padding: 0 1;
    background: $warning 20%;
    color: $text;
    display: none;
}

#banner.visible {
    display: block;
}

#tag-filter {
    height: 1;
    padding: 0 1;
    background: $panel;
    color: $text-muted;
}

#paper-grid {
    height: 1fr;
    border: tall $primary 40%;
}

#paper-grid:focus {
    border: tall $accent;
}

#status-bar {
    height: 1;
    padding: 0 1;
    background: $panel;
    color: $text-muted;
}
"""

# Grid columns: (key, header, max cell width)
GRID_COLUMNS: tuple[tuple[str, str, int], ...] = (
    ("selected", " ", 1),
    ("status", "Status", 10),
    ("sync", "Sync", 7),
    ("file", "File", 24),
    ("type", "Type", 12),
    ("title", "Title", 40),
    ("publication", "Venue", 16),
    ("problem", "Problem", 36),
    ("solution_idea", "Solution", 36),
    ("tags", "Tags", 20),
    ("annotations", "Shots", 5),
)

STATUS_LABELS: dict[str, str] = {
    "idle": "waiting",
    "analyzing": "analyzing",
    "success": "done",
    "error": "FAILED",
}

SYNC_LABELS: dict[str, str] = {
    "unset": "-",
    "saving": "saving",
    "saved": "saved",
    "error": "unsaved",
}

APP_BINDINGS: list[BindingType] = [
    Binding("q", "quit", "Quit"),
    Binding("a", "add_papers", "Add"),
    Binding("r", "retry", "Retry"),
    Binding("d", "delete", "Delete"),
    Binding("t", "edit_tags", "Tags"),
    Binding("i", "attach_screenshot", "Screenshot"),
    Binding("I", "screenshots", "Shots", show=False),
    Binding("e", "edit_analysis", "Edit"),
    Binding("space", "toggle_select", "Select", show=False),
    Binding("c", "compare", "Compare"),
    Binding("v", "show_detail", "View", show=False),
    Binding("f", "cycle_filter", "Filter"),
    Binding("s", "settings", "Settings"),
    Binding("b", "edit_banner", "Banner", show=False),
    Binding("H", "recheck_health", "Recheck", show=False),
]

__all__ = [
    "APP_BINDINGS",
    "APP_CSS",
    "GRID_COLUMNS",
    "STATUS_LABELS",
    "SYNC_LABELS",
]
