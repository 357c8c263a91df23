"""CLI/bootstrap helpers for the PaperScope application."""

from __future__ import annotations

import argparse
import logging
import logging.handlers
import sys
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

from paperscope.action_messages import build_actionable_error
from paperscope.config import clamp_max_parallel, load_config
from paperscope.models import CONFIG_APP_NAME, MAX_PARALLEL_LIMIT, UserConfig

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure logging. When debug=True, logs to file at DEBUG level."""
    if not debug:
        # Default: suppress all logging (TUI captures stderr)
        logging.disable(logging.CRITICAL)
        return

    log_dir = Path(user_config_dir(CONFIG_APP_NAME))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "debug.log"

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    logging.root.addHandler(handler)
    logging.root.setLevel(logging.DEBUG)


def _validate_interactive_tty() -> bool:
    """Return True when stdin/stdout are interactive terminals."""
    return bool(sys.stdin.isatty() and sys.stdout.isatty())


def _resolve_pdf_paths(raw_paths: list[Path]) -> list[Path] | int:
    """Check startup PDF arguments; returns an exit code on the first bad path."""
    resolved: list[Path] = []
    for path in raw_paths:
        path = path.expanduser()
        if not path.is_file():
            print(
                build_actionable_error(
                    f"open {path}",
                    why="the file does not exist",
                    next_step="check the path and try again",
                ),
                file=sys.stderr,
            )
            return 1
        if path.suffix.lower() != ".pdf":
            print(
                build_actionable_error(
                    f"add {path}",
                    why="only PDF files can be analyzed",
                    next_step="pass .pdf files only",
                ),
                file=sys.stderr,
            )
            return 1
        resolved.append(path)
    return resolved


def _apply_overrides(config: UserConfig, args: argparse.Namespace) -> UserConfig:
    """Layer command-line flags over the loaded config (not persisted)."""
    overrides: dict[str, Any] = {}
    if args.backend_url:
        overrides["backend_url"] = args.backend_url
    if args.max_parallel is not None:
        overrides["max_parallel"] = clamp_max_parallel(args.max_parallel)
    return replace(config, **overrides) if overrides else config


def main(
    argv: list[str] | None = None,
    *,
    load_config_fn: Callable[[], UserConfig] = load_config,
    configure_logging_fn: Callable[[bool], None] = _configure_logging,
    validate_interactive_tty_fn: Callable[[], bool] = _validate_interactive_tty,
    app_factory: Callable[..., Any] | None = None,
) -> int:
    """Main entry point. Returns exit code."""
    parser = argparse.ArgumentParser(
        description="Analyze research-paper PDFs with an LLM in a terminal workspace"
    )
    parser.add_argument(
        "pdfs",
        nargs="*",
        type=Path,
        help="PDF files to upload and analyze on startup",
    )
    parser.add_argument(
        "--backend-url",
        type=str,
        default=None,
        help="Base URL of paperscope-server (default: config value, http://127.0.0.1:8080)",
    )
    parser.add_argument(
        "--max-parallel",
        type=int,
        default=None,
        help=f"Concurrent analyses (1-{MAX_PARALLEL_LIMIT}; default: config value)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging to file (~/.config/paperscope/debug.log)",
    )
    args = parser.parse_args(argv)

    configure_logging_fn(args.debug)
    logger.debug("paperscope starting, cwd=%s", Path.cwd())

    pdf_paths = _resolve_pdf_paths(args.pdfs)
    if isinstance(pdf_paths, int):
        return pdf_paths

    config = _apply_overrides(load_config_fn(), args)

    if not validate_interactive_tty_fn():
        print(
            "Error: paperscope requires an interactive TTY for the full UI.",
            file=sys.stderr,
        )
        print("Next steps:", file=sys.stderr)
        print("  - Run paperscope directly in a terminal session", file=sys.stderr)
        print("  - Use --help for command documentation", file=sys.stderr)
        return 2

    if app_factory is None:
        from paperscope.app import PaperScopeApp as _PaperScopeApp

        app_factory = _PaperScopeApp

    app = app_factory(config, initial_paths=pdf_paths)
    app.run()
    return 0


__all__ = [
    "_apply_overrides",
    "_configure_logging",
    "_resolve_pdf_paths",
    "_validate_interactive_tty",
    "main",
]
