"""UI-facing copy builders for action confirmations and notifications."""

from __future__ import annotations

from paperscope.errors import (
    CredentialMissing,
    NetworkUnreachable,
    RateLimited,
    RequestTimeout,
    StorageWriteFailed,
)


def _ensure_sentence(text: str) -> str:
    """Return text with terminal sentence punctuation."""
    cleaned = text.strip()
    if not cleaned:
        return ""
    if cleaned.endswith((".", "!", "?")):
        return cleaned
    return f"{cleaned}."


def _plural(count: int, noun: str) -> str:
    return f"{count} {noun}{'s' if count != 1 else ''}"


def build_next_step_hint(next_step: str) -> str:
    """Build a canonical next-step guidance line."""
    return f"Next step: {_ensure_sentence(next_step)}"


def build_actionable_error(
    action: str,
    *,
    next_step: str,
    why: str | None = None,
) -> str:
    """Build a 2-3 line actionable error message."""
    lines = [f"Could not {action.strip()}."]
    if why:
        lines.append(f"Why: {_ensure_sentence(why)}")
    lines.append(build_next_step_hint(next_step))
    return "\n".join(lines)


def build_actionable_warning(
    message: str,
    *,
    next_step: str,
    why: str | None = None,
) -> str:
    """Build a 2-3 line actionable warning message."""
    lines = [_ensure_sentence(message)]
    if why:
        lines.append(f"Why: {_ensure_sentence(why)}")
    lines.append(build_next_step_hint(next_step))
    return "\n".join(lines)


def build_actionable_success(
    message: str,
    *,
    detail: str | None = None,
    next_step: str | None = None,
) -> str:
    """Build a concise success message with optional detail and next step."""
    lines = [_ensure_sentence(message)]
    if detail:
        lines.append(_ensure_sentence(detail))
    if next_step:
        lines.append(build_next_step_hint(next_step))
    return "\n".join(lines)


def next_step_for_error(exc: BaseException) -> str:
    """Suggest a follow-up for a classified failure."""
    if isinstance(exc, StorageWriteFailed):
        return "start paperscope-server or fix the backend URL, then press H to recheck"
    if isinstance(exc, CredentialMissing):
        return "open settings (s) and enter an API key"
    if isinstance(exc, RateLimited):
        return "wait a minute, then retry with r"
    if isinstance(exc, RequestTimeout):
        return "retry with r or raise the timeout in settings"
    if isinstance(exc, NetworkUnreachable):
        return "check your connection, then retry with r"
    return "retry with r or check the debug log (--debug)"


def build_upload_notification(file_count: int) -> str:
    """Build notification text for queued uploads."""
    return f"Queued {_plural(file_count, 'paper')} for analysis..."


def build_delete_confirmation_prompt(title: str) -> str:
    """Build confirmation prompt text for deleting one paper."""
    return f"Delete “{title}”?\nThe stored PDF and its analysis will be removed."


def build_compare_selection_warning(selected: int) -> str:
    """Build the warning shown when too few analyzed papers are selected."""
    return build_actionable_warning(
        f"{_plural(selected, 'analyzed paper')} selected",
        why="comparison needs at least two analyzed papers",
        next_step="select more papers with space, then press c",
    )


def build_backend_status(healthy: bool, checked: bool) -> str:
    """Build the status-bar fragment describing backend reachability."""
    if not checked:
        return "backend: checking"
    return "backend: online" if healthy else "backend: OFFLINE"


__all__ = [
    "build_actionable_error",
    "build_actionable_success",
    "build_actionable_warning",
    "build_backend_status",
    "build_compare_selection_warning",
    "build_delete_confirmation_prompt",
    "build_next_step_hint",
    "build_upload_notification",
    "next_step_for_error",
]
