"""PaperScope TUI: a grid of uploaded papers and their structured summaries."""

from __future__ import annotations

import asyncio
import logging
import webbrowser
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
from platformdirs import user_cache_dir
from rich.markup import escape as escape_markup
from rich.text import Text
from textual import on
from textual.app import App, ComposeResult
from textual.coordinate import Coordinate
from textual.widgets import DataTable, Footer, Header, Label, Static
from textual.widgets.data_table import CellDoesNotExist, RowDoesNotExist

from paperscope.action_messages import (
    build_actionable_error,
    build_actionable_success,
    build_actionable_warning,
    build_backend_status,
    build_compare_selection_warning,
    build_delete_confirmation_prompt,
    build_upload_notification,
    next_step_for_error,
)
from paperscope.config import save_config
from paperscope.errors import PaperScopeError, describe_error
from paperscope.modals import (
    DETAIL_EDIT,
    DETAIL_SCREENSHOTS,
    AddPapersModal,
    AddPapersRequest,
    AnalysisEdit,
    ComparisonModal,
    ConfirmModal,
    DetailModal,
    EditAnalysisModal,
    ScreenshotAction,
    ScreenshotsModal,
    SettingsModal,
    TagsModal,
    TextInputModal,
)
from paperscope.models import (
    ANALYSIS_FIELD_LABELS,
    CONFIG_APP_NAME,
    TAG_FILTER_ALL,
    TAG_FILTER_UNCATEGORIZED,
    LLMSettings,
    PaperRecord,
    UserConfig,
)
from paperscope.services.persistence_service import PersistenceBridge
from paperscope.ui_constants import (
    APP_BINDINGS,
    APP_CSS,
    GRID_COLUMNS,
    STATUS_LABELS,
    SYNC_LABELS,
)
from paperscope.workspace import Workspace

logger = logging.getLogger(__name__)

SCREENSHOT_CACHE_DIRNAME = "screenshots"


def _truncate(text: str, width: int) -> str:
    """First line of ``text`` with whitespace collapsed, cut to ``width``."""
    flat = " ".join(text.split())
    if len(flat) <= width:
        return flat
    return flat[: max(width - 1, 0)] + "…"


def render_grid_row(record: PaperRecord, selected: bool = False) -> tuple[Text, ...]:
    """Build the grid cells for one record, in GRID_COLUMNS order."""
    analysis = record.analysis
    values: dict[str, str] = {
        "selected": "●" if selected else "",
        "status": STATUS_LABELS.get(record.analysis_status, record.analysis_status),
        "sync": SYNC_LABELS.get(record.sync_status, record.sync_status),
        "file": record.file_name,
        "tags": ", ".join(record.tags),
        "annotations": str(len(record.annotations)) if record.annotations else "",
    }
    for key in ("type", "title", "publication", "problem", "solution_idea"):
        values[key] = analysis.get(key) if analysis is not None else ""
    if record.analysis_status == "error" and record.error_message:
        values["problem"] = record.error_message

    cells: list[Text] = []
    for key, _header, width in GRID_COLUMNS:
        style = ""
        if key == "status" and record.analysis_status == "error":
            style = "bold red"
        elif key == "sync" and record.sync_status == "error":
            style = "yellow"
        cells.append(Text(_truncate(values.get(key, ""), width), style=style))
    return tuple(cells)


def tag_filter_tabs(tags: list[str]) -> list[str]:
    return [TAG_FILTER_ALL, *tags, TAG_FILTER_UNCATEGORIZED]


class PaperScopeApp(App):
    """Upload PDFs, watch them get analyzed, tag and compare the results."""

    TITLE = "PaperScope"
    CSS = APP_CSS
    BINDINGS = APP_BINDINGS

    def __init__(
        self,
        config: UserConfig | None = None,
        *,
        initial_paths: list[Path] | None = None,
        workspace: Workspace | None = None,
        save_config_fn: Callable[[UserConfig], bool] = save_config,
        poll_health: bool = True,
    ) -> None:
        super().__init__()
        self._config = config or UserConfig()
        self._initial_paths = list(initial_paths or [])
        self._workspace: Workspace | None = workspace
        self._save_config_fn = save_config_fn
        self._poll_health = poll_health
        self.selected_ids: set[str] = set()
        self._tag_filter = TAG_FILTER_ALL
        self._banner = ""
        self._refresh_pending = False
        self._unsubscribe_store: Callable[[], None] | None = None
        self._background_tasks: set[asyncio.Task[None]] = set()

        # Shared HTTP client, created in on_mount unless a workspace was injected
        self._http_client: httpx.AsyncClient | None = None

    @property
    def workspace(self) -> Workspace:
        if self._workspace is None:
            raise RuntimeError("workspace is not initialized before mount")
        return self._workspace

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("", id="banner")
        yield Label("", id="tag-filter")
        yield DataTable(id="paper-grid", cursor_type="row", zebra_stripes=True)
        yield Label("", id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        if self._workspace is None:
            self._http_client = httpx.AsyncClient(base_url=self._config.backend_url)
            self._workspace = Workspace(
                bridge=PersistenceBridge(self._http_client),
                settings=self._config.llm,
                max_parallel=self._config.max_parallel,
                health_interval=self._config.health_interval_seconds,
            )
        workspace = self.workspace
        self._unsubscribe_store = workspace.store.subscribe(self._on_store_changed)
        workspace.health.subscribe(self._on_health_changed)

        table = self._grid()
        for key, header, _width in GRID_COLUMNS:
            table.add_column(header, key=key)
        self._refresh_view()
        table.focus()
        self._track_task(self._startup())
        logger.debug("App mounted, backend=%s", self._config.backend_url)

    async def _startup(self) -> None:
        workspace = self.workspace
        await workspace.start(poll=self._poll_health)
        self._set_banner(await workspace.bridge.get_banner())
        if self._initial_paths:
            paths, self._initial_paths = self._initial_paths, []
            await self._upload_paths(paths, ())

    async def on_unmount(self) -> None:
        if self._unsubscribe_store is not None:
            self._unsubscribe_store()
            self._unsubscribe_store = None

        pending = [task for task in self._background_tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending, timeout=0.5)
        self._background_tasks.clear()

        if self._workspace is not None:
            await self._workspace.close()

        client = self._http_client
        self._http_client = None
        if client is not None:
            try:
                await client.aclose()
            except Exception as e:
                logger.debug("Failed to close HTTP client during shutdown: %s", e, exc_info=True)

    def _track_task(self, coro: Any) -> asyncio.Task[None]:
        """Create an asyncio task and track it to prevent garbage collection."""
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        task.add_done_callback(self._on_task_done)
        return task

    @staticmethod
    def _on_task_done(task: asyncio.Task[None]) -> None:
        """Log unhandled exceptions from background tasks."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Unhandled exception in background task: %s", exc, exc_info=exc)

    # ========================================================================
    # Rendering
    # ========================================================================

    def _grid(self) -> DataTable:
        return self.query_one("#paper-grid", DataTable)

    def _on_store_changed(self, _paper_id: str) -> None:
        if self._refresh_pending:
            return
        self._refresh_pending = True
        self.call_later(self._refresh_view)

    def _on_health_changed(self, _healthy: bool) -> None:
        self._update_status_bar()

    def _set_banner(self, banner: str | None) -> None:
        self._banner = banner or ""
        widget = self.query_one("#banner", Static)
        widget.update(escape_markup(banner or ""))
        widget.set_class(bool(banner), "visible")

    def _refresh_view(self) -> None:
        self._refresh_pending = False
        if self._workspace is None:
            return
        store = self.workspace.store
        self.selected_ids &= set(store.ids())
        tabs = tag_filter_tabs(store.all_tags())
        if self._tag_filter not in tabs:
            self._tag_filter = TAG_FILTER_ALL

        table = self._grid()
        current_id = self._current_paper_id()
        table.clear()
        for record in store.filter_by_tag(self._tag_filter):
            table.add_row(*render_grid_row(record, record.id in self.selected_ids), key=record.id)
        if current_id is not None and table.row_count:
            try:
                table.move_cursor(row=table.get_row_index(current_id))
            except RowDoesNotExist:
                logger.debug("Previously highlighted paper %s is gone", current_id)

        self._update_tag_filter(tabs)
        self._update_status_bar()

    def _update_tag_filter(self, tabs: list[str]) -> None:
        store = self.workspace.store
        parts = []
        for tab in tabs:
            label = f" {escape_markup(tab)} ({store.count_for_tag(tab)}) "
            parts.append(f"[reverse]{label}[/reverse]" if tab == self._tag_filter else label)
        self.query_one("#tag-filter", Label).update("".join(parts))

    def _update_status_bar(self) -> None:
        if self._workspace is None:
            return
        workspace = self.workspace
        queue = workspace.queue
        waiting = len(queue) - queue.running_count
        status = " · ".join(
            [
                build_backend_status(workspace.health.healthy, workspace.health.checked),
                f"analyzing {queue.running_count}/{queue.max_parallel}, {waiting} waiting",
                f"{len(workspace.store)} papers",
                f"{len(self.selected_ids)} selected",
                "external" if workspace.settings.use_external else "managed",
            ]
        )
        self.query_one("#status-bar", Label).update(status)

    def _current_paper_id(self) -> str | None:
        table = self._grid()
        if table.row_count == 0:
            return None
        try:
            row_key, _ = table.coordinate_to_cell_key(Coordinate(table.cursor_row, 0))
        except CellDoesNotExist:
            return None
        return row_key.value

    def _current_record(self) -> PaperRecord | None:
        paper_id = self._current_paper_id()
        return self.workspace.store.get(paper_id) if paper_id else None

    def _notify_failure(self, action: str, exc: BaseException) -> None:
        self.notify(
            build_actionable_error(
                action, why=describe_error(exc), next_step=next_step_for_error(exc)
            ),
            severity="error",
            timeout=8,
        )

    # ========================================================================
    # Actions
    # ========================================================================

    def action_add_papers(self) -> None:
        def on_picked(request: AddPapersRequest | None) -> None:
            if request is None:
                return
            self._track_task(self._upload_paths(request.paths, request.tags))

        self.push_screen(AddPapersModal(), on_picked)

    async def _upload_paths(self, paths: list[Path], tags: tuple[str, ...]) -> None:
        try:
            created = await self.workspace.upload_paths(paths, tags)
        except PaperScopeError as e:
            self._notify_failure("upload papers", e)
            return
        except (OSError, ValueError) as e:
            self.notify(
                build_actionable_error(
                    "read the selected files",
                    why=str(e),
                    next_step="check the paths and pick PDF files",
                ),
                severity="error",
            )
            return
        self.notify(build_upload_notification(len(created)))

    def action_retry(self) -> None:
        record = self._current_record()
        if record is None:
            return
        if not self.workspace.retry(record.id):
            self.notify("Analysis is already queued for this paper", severity="warning")

    def action_delete(self) -> None:
        record = self._current_record()
        if record is None:
            return
        paper_id = record.id

        def on_confirmed(confirmed: bool | None) -> None:
            if not confirmed:
                return
            self.selected_ids.discard(paper_id)
            self._track_task(self._delete(paper_id))

        prompt = build_delete_confirmation_prompt(record.display_title)
        self.push_screen(ConfirmModal(prompt), on_confirmed)

    async def _delete(self, paper_id: str) -> None:
        await self.workspace.delete(paper_id)

    def action_edit_tags(self) -> None:
        record = self._current_record()
        if record is None:
            return
        paper_id = record.id

        def on_tags_saved(tags: tuple[str, ...] | None) -> None:
            if tags is None:
                return
            try:
                self.workspace.set_tags(paper_id, tags)
            except KeyError:
                return
            self.notify(f"Tags: {', '.join(tags) if tags else 'none'}", title="Tags")

        self.push_screen(
            TagsModal(record.display_title, record.tags, all_tags=self.workspace.store.all_tags()),
            on_tags_saved,
        )

    def action_attach_screenshot(self) -> None:
        record = self._current_record()
        if record is None:
            return
        paper_id = record.id

        def on_path(text: str | None) -> None:
            if not text or not text.strip():
                return
            self._track_task(self._attach(paper_id, Path(text.strip()).expanduser()))

        self.push_screen(
            TextInputModal(
                "Attach screenshot",
                placeholder="~/Pictures/figure.png",
                help_text="Path to an image file (PNG, JPEG, ...)",
            ),
            on_path,
        )

    async def _attach(self, paper_id: str, path: Path) -> None:
        try:
            await self.workspace.add_annotation_file(paper_id, path)
        except (OSError, ValueError) as e:
            self.notify(
                build_actionable_error(
                    "attach the screenshot", why=str(e), next_step="pick an existing image file"
                ),
                severity="error",
            )
        except KeyError:
            logger.debug("Paper %s deleted before screenshot was attached", paper_id)
        else:
            self.notify("Screenshot attached")

    def action_edit_analysis(self) -> None:
        paper_id = self._current_paper_id()
        if paper_id is not None:
            self._edit_analysis(paper_id)

    def _edit_analysis(self, paper_id: str) -> None:
        record = self.workspace.store.get(paper_id)
        if record is None:
            return
        if record.analysis is None:
            self.notify(
                build_actionable_warning(
                    "This paper has no analysis to edit yet",
                    next_step="wait for the analysis or press r to retry",
                ),
                severity="warning",
            )
            return

        def on_edited(edit: AnalysisEdit | None) -> None:
            if edit is None:
                return
            try:
                self.workspace.update_analysis_field(paper_id, edit.field, edit.text)
            except KeyError:
                logger.debug("Paper %s deleted before the edit was saved", paper_id)
            except ValueError as e:
                self.notify(
                    build_actionable_error(
                        "save the edit", why=str(e), next_step="press e to edit again"
                    ),
                    severity="error",
                )
            else:
                self.notify(f"Updated {ANALYSIS_FIELD_LABELS[edit.field]}")

        self.push_screen(EditAnalysisModal(record.display_title, record.analysis), on_edited)

    def action_screenshots(self) -> None:
        paper_id = self._current_paper_id()
        if paper_id is not None:
            self._manage_screenshots(paper_id)

    def _manage_screenshots(self, paper_id: str) -> None:
        record = self.workspace.store.get(paper_id)
        if record is None:
            return
        if not record.annotations:
            self.notify(
                build_actionable_warning(
                    "No screenshots attached", next_step="press i to attach one"
                ),
                severity="warning",
            )
            return

        def on_action(action: ScreenshotAction | None) -> None:
            if action is None:
                return
            if action.kind == "remove":
                self._remove_screenshot(paper_id, action.index)
            else:
                self._track_task(self._open_screenshot(paper_id, action.index))

        self.push_screen(ScreenshotsModal(record.display_title, record.annotations), on_action)

    def _remove_screenshot(self, paper_id: str, index: int) -> None:
        try:
            self.workspace.remove_annotation(paper_id, index)
        except (KeyError, IndexError):
            logger.debug("Screenshot %d of %s already gone", index, paper_id)
            return
        self.notify(f"Removed screenshot {index + 1}")

    async def _open_screenshot(self, paper_id: str, index: int) -> None:
        directory = Path(user_cache_dir(CONFIG_APP_NAME)) / SCREENSHOT_CACHE_DIRNAME
        try:
            path = await self.workspace.export_annotation(paper_id, index, directory)
        except (KeyError, IndexError):
            logger.debug("Screenshot %d of %s already gone", index, paper_id)
            return
        except (OSError, ValueError) as e:
            self.notify(
                build_actionable_error(
                    "open the screenshot", why=str(e), next_step="attach the image again"
                ),
                severity="error",
            )
            return
        self._safe_browser_open(path.as_uri())

    def _safe_browser_open(self, url: str) -> bool:
        """Open a URL in the system viewer with error handling. Returns True on success."""
        try:
            webbrowser.open(url)
            return True
        except (webbrowser.Error, OSError) as e:
            logger.warning("Failed to open viewer for %s: %s", url, e)
            self.notify(
                build_actionable_error(
                    "open the image viewer",
                    why="the system viewer command failed",
                    next_step=f"open {url} manually",
                ),
                severity="error",
                timeout=8,
            )
            return False

    def action_toggle_select(self) -> None:
        paper_id = self._current_paper_id()
        if paper_id is None:
            return
        if paper_id in self.selected_ids:
            self.selected_ids.discard(paper_id)
        else:
            self.selected_ids.add(paper_id)
        self._refresh_view()

    def action_compare(self) -> None:
        store = self.workspace.store
        analyzed = [
            pid
            for pid in store.ids()
            if pid in self.selected_ids and (r := store.get(pid)) and r.analysis is not None
        ]
        if len(analyzed) < 2:
            self.notify(build_compare_selection_warning(len(analyzed)), severity="warning")
            return
        self.notify(f"Comparing {len(analyzed)} papers...")
        self._track_task(self._compare(analyzed))

    async def _compare(self, paper_ids: list[str]) -> None:
        try:
            result = await self.workspace.compare(paper_ids)
        except (PaperScopeError, ValueError) as e:
            self._notify_failure("compare papers", e)
            return
        self.push_screen(ComparisonModal(result))

    @on(DataTable.RowSelected, "#paper-grid")
    def on_row_selected(self, event: DataTable.RowSelected) -> None:
        record = self.workspace.store.get(event.row_key.value or "")
        if record is not None:
            self._open_detail(record)

    def action_show_detail(self) -> None:
        record = self._current_record()
        if record is not None:
            self._open_detail(record)

    def _open_detail(self, record: PaperRecord) -> None:
        paper_id = record.id

        def on_closed(choice: str | None) -> None:
            if choice == DETAIL_EDIT:
                self._edit_analysis(paper_id)
            elif choice == DETAIL_SCREENSHOTS:
                self._manage_screenshots(paper_id)

        self.push_screen(DetailModal(record), on_closed)

    def action_cycle_filter(self) -> None:
        tabs = tag_filter_tabs(self.workspace.store.all_tags())
        index = tabs.index(self._tag_filter) if self._tag_filter in tabs else -1
        self._tag_filter = tabs[(index + 1) % len(tabs)]
        self._refresh_view()

    def action_settings(self) -> None:
        def on_saved(settings: LLMSettings | None) -> None:
            if settings is None:
                return
            self.workspace.update_settings(settings)
            self._config.llm = settings
            if self._save_config_fn(self._config):
                self.notify(build_actionable_success("Settings saved"))
            else:
                self.notify(
                    "Settings apply to this session but could not be saved",
                    severity="warning",
                )
            self._update_status_bar()

        self.push_screen(SettingsModal(self.workspace.settings), on_saved)

    def action_edit_banner(self) -> None:
        current = self._banner

        def on_banner(text: str | None) -> None:
            if text is None:
                return
            self._track_task(self._save_banner(text.strip()))

        self.push_screen(
            TextInputModal("Shared banner", value=current, help_text="Shown to every user"),
            on_banner,
        )

    async def _save_banner(self, banner: str) -> None:
        if await self.workspace.bridge.set_banner(banner):
            self._set_banner(banner)
        else:
            self.notify("Could not save the banner", severity="warning")

    def action_recheck_health(self) -> None:
        self._track_task(self._recheck_health())

    async def _recheck_health(self) -> None:
        healthy = await self.workspace.recheck_health()
        if healthy:
            self.notify("Backend is reachable")
        else:
            self.notify("Backend is unreachable", severity="warning")


__all__ = [
    "PaperScopeApp",
    "render_grid_row",
    "tag_filter_tabs",
]
