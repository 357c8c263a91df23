"""Modal dialogs for the PaperScope TUI.

Import modals from this package: ``from paperscope.modals import TagsModal``
"""

# common.py: general-purpose dialogs
from paperscope.modals.common import (
    ConfirmModal,
    TextInputModal,
)

# editing.py: adding papers, tags, analysis fields, model settings
from paperscope.modals.editing import (
    AddPapersModal,
    AddPapersRequest,
    AnalysisEdit,
    EditAnalysisModal,
    SettingsModal,
    TagsModal,
    parse_path_input,
)

# papers.py: detail, screenshot and comparison views
from paperscope.modals.papers import (
    DETAIL_EDIT,
    DETAIL_SCREENSHOTS,
    ComparisonModal,
    DetailModal,
    ScreenshotAction,
    ScreenshotsModal,
    describe_annotation,
    render_detail_markup,
)

__all__ = [
    "DETAIL_EDIT",
    "DETAIL_SCREENSHOTS",
    "AddPapersModal",
    "AddPapersRequest",
    "AnalysisEdit",
    "ComparisonModal",
    "ConfirmModal",
    "DetailModal",
    "EditAnalysisModal",
    "ScreenshotAction",
    "ScreenshotsModal",
    "SettingsModal",
    "TagsModal",
    "TextInputModal",
    "describe_annotation",
    "parse_path_input",
    "render_detail_markup",
]
