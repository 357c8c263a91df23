"""Tests for UI-facing message builders."""

from __future__ import annotations

import pytest

from paperscope.action_messages import (
    build_actionable_error,
    build_actionable_success,
    build_actionable_warning,
    build_backend_status,
    build_compare_selection_warning,
    build_delete_confirmation_prompt,
    build_next_step_hint,
    build_upload_notification,
    next_step_for_error,
)
from paperscope.errors import (
    CredentialMissing,
    FetchFailed,
    RateLimited,
    RequestTimeout,
    StorageWriteFailed,
    Unclassified,
)


def test_next_step_hint_adds_period():
    assert build_next_step_hint("press r") == "Next step: press r."
    assert build_next_step_hint("really?") == "Next step: really?"


def test_actionable_error_layout():
    message = build_actionable_error("upload papers", why="backend down", next_step="press H")
    assert message.splitlines() == [
        "Could not upload papers.",
        "Why: backend down.",
        "Next step: press H.",
    ]


def test_actionable_warning_without_why():
    message = build_actionable_warning("Careful", next_step="check it")
    assert message == "Careful.\nNext step: check it."


def test_actionable_success_optional_lines():
    assert build_actionable_success("Saved") == "Saved."
    full = build_actionable_success("Saved", detail="2 papers", next_step="press c")
    assert full.splitlines() == ["Saved.", "2 papers.", "Next step: press c."]


@pytest.mark.parametrize(
    ("exc", "fragment"),
    [
        (StorageWriteFailed(), "paperscope-server"),
        (CredentialMissing(), "API key"),
        (RateLimited(), "wait a minute"),
        (RequestTimeout(), "timeout"),
        (FetchFailed(), "connection"),
        (Unclassified(), "--debug"),
    ],
)
def test_next_step_for_error(exc, fragment):
    assert fragment in next_step_for_error(exc)


def test_upload_notification_pluralizes():
    assert build_upload_notification(1) == "Queued 1 paper for analysis..."
    assert build_upload_notification(3) == "Queued 3 papers for analysis..."


def test_delete_prompt_names_paper():
    assert "Attention" in build_delete_confirmation_prompt("Attention")


def test_compare_warning():
    message = build_compare_selection_warning(1)
    assert message.startswith("1 analyzed paper selected.")
    assert "at least two" in message


@pytest.mark.parametrize(
    ("healthy", "checked", "expected"),
    [
        (False, False, "backend: checking"),
        (True, True, "backend: online"),
        (False, True, "backend: OFFLINE"),
    ],
)
def test_backend_status(healthy, checked, expected):
    assert build_backend_status(healthy, checked) == expected
