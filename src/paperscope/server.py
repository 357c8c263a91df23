"""Backend server: JSON metadata and PDF storage for the workspace client.

Layout under the data directory::

    papers.json        array of stored paper records (wire format)
    config.json        {"banner": ...}
    uploads/<id>.pdf   uploaded PDF bytes
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Any

from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from paperscope.config import write_bytes_atomic
from paperscope.models import PDF_MIME_TYPE

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8080
DEFAULT_DATA_DIR = "data"
PAPERS_FILENAME = "papers.json"
SERVER_CONFIG_FILENAME = "config.json"
UPLOADS_DIRNAME = "uploads"
CREDENTIAL_ENV_VARS = ("API_KEY", "GEMINI_API_KEY")

_FILE_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+\.pdf$")
_PAPER_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_DATA_URI_PREFIX_RE = re.compile(r"^data:[^;,]*;base64,")


class BannerUpdate(BaseModel):
    banner: str = ""


# ============================================================================
# Storage
# ============================================================================


def _write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON via tempfile + os.replace so readers never see partial files."""
    payload = json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")
    write_bytes_atomic(path, payload)


def decode_file_data(file_data: str) -> bytes:
    """Decode base64 PDF data, with or without a ``data:<mime>;base64,`` prefix."""
    encoded = _DATA_URI_PREFIX_RE.sub("", file_data.strip(), count=1)
    return base64.b64decode(encoded, validate=True)


class PaperStorage:
    """File-backed paper store. All writes hold one lock."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = data_dir
        self.uploads_dir = data_dir / UPLOADS_DIRNAME
        self.papers_path = data_dir / PAPERS_FILENAME
        self.config_path = data_dir / SERVER_CONFIG_FILENAME
        self._lock = threading.Lock()
        self.uploads_dir.mkdir(parents=True, exist_ok=True)

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read %s, using empty data: %s", path.name, e)
            return default

    def list_papers(self) -> list[dict[str, Any]]:
        papers = self._read_json(self.papers_path, [])
        return [p for p in papers if isinstance(p, dict)] if isinstance(papers, list) else []

    def upsert_paper(self, paper: dict[str, Any], file_bytes: bytes | None) -> str:
        """Store metadata (and bytes when given); returns the paper's file URL."""
        paper_id = paper["id"]
        file_url = f"/api/files/{paper_id}.pdf"
        record = {k: v for k, v in paper.items() if k != "fileData"}
        record["fileUrl"] = file_url
        with self._lock:
            if file_bytes is not None:
                write_bytes_atomic(self.uploads_dir / f"{paper_id}.pdf", file_bytes)
            papers = [p for p in self.list_papers() if p.get("id") != paper_id]
            papers.append(record)
            _write_json_atomic(self.papers_path, papers)
        return file_url

    def delete_paper(self, paper_id: str) -> None:
        with self._lock:
            papers = self.list_papers()
            remaining = [p for p in papers if p.get("id") != paper_id]
            if len(remaining) != len(papers):
                _write_json_atomic(self.papers_path, remaining)
            try:
                (self.uploads_dir / f"{paper_id}.pdf").unlink()
            except FileNotFoundError:
                pass

    def get_banner(self) -> str:
        config = self._read_json(self.config_path, {})
        banner = config.get("banner") if isinstance(config, dict) else None
        return banner if isinstance(banner, str) else ""

    def set_banner(self, banner: str) -> None:
        with self._lock:
            config = self._read_json(self.config_path, {})
            if not isinstance(config, dict):
                config = {}
            config["banner"] = banner
            _write_json_atomic(self.config_path, config)

    def is_writable(self) -> bool:
        return self.data_dir.is_dir() and os.access(self.data_dir, os.W_OK)

    def resolve_upload(self, name: str) -> Path | None:
        """Map a requested file name to a path inside uploads/, or None."""
        if not _FILE_NAME_RE.match(name):
            return None
        root = self.uploads_dir.resolve()
        path = (root / name).resolve()
        if path.parent != root:
            return None
        return path


# ============================================================================
# App factory
# ============================================================================


def create_app(data_dir: Path | str = DEFAULT_DATA_DIR) -> FastAPI:
    storage = PaperStorage(Path(data_dir))
    app = FastAPI(title="PaperScope backend", version="0.1.0")
    app.state.storage = storage

    @app.get("/api/papers")
    def list_papers() -> list[dict[str, Any]]:
        return storage.list_papers()

    @app.post("/api/papers")
    def save_paper(paper: dict[str, Any] = Body(...)) -> dict[str, Any]:
        paper_id = paper.get("id")
        if not isinstance(paper_id, str) or not _PAPER_ID_RE.match(paper_id):
            raise HTTPException(status_code=400, detail="missing or invalid paper id")
        file_bytes: bytes | None = None
        file_data = paper.get("fileData")
        if isinstance(file_data, str) and file_data:
            try:
                file_bytes = decode_file_data(file_data)
            except (binascii.Error, ValueError):
                raise HTTPException(
                    status_code=400, detail="fileData is not valid base64"
                ) from None
        try:
            file_url = storage.upsert_paper(paper, file_bytes)
        except OSError as e:
            logger.error("Failed to store paper %s: %s", paper_id, e)
            return JSONResponse(status_code=500, content={"error": "failed to write paper"})
        logger.info("Stored paper %s", paper_id)
        return {"success": True, "fileUrl": file_url}

    @app.delete("/api/papers/{paper_id}")
    def delete_paper(paper_id: str) -> dict[str, Any]:
        if not _PAPER_ID_RE.match(paper_id):
            raise HTTPException(status_code=400, detail="invalid paper id")
        try:
            storage.delete_paper(paper_id)
        except OSError as e:
            logger.error("Failed to delete paper %s: %s", paper_id, e)
            return JSONResponse(status_code=500, content={"error": "failed to delete paper"})
        logger.info("Deleted paper %s", paper_id)
        return {"success": True}

    @app.get("/api/config/banner")
    def get_banner() -> dict[str, str]:
        return {"banner": storage.get_banner()}

    @app.post("/api/config/banner")
    def set_banner(update: BannerUpdate) -> dict[str, Any]:
        try:
            storage.set_banner(update.banner)
        except OSError as e:
            logger.error("Failed to save banner: %s", e)
            return JSONResponse(status_code=500, content={"error": "failed to save banner"})
        return {"success": True, "banner": update.banner}

    @app.get("/api/config/env")
    def get_env_config() -> dict[str, str]:
        api_key = next((os.environ[v] for v in CREDENTIAL_ENV_VARS if os.environ.get(v)), "")
        return {"apiKey": api_key}

    @app.get("/api/health")
    def health() -> JSONResponse:
        if storage.is_writable():
            return JSONResponse(status_code=200, content={"ok": True})
        return JSONResponse(status_code=503, content={"ok": False, "error": "storage unavailable"})

    @app.get("/api/files/{name}")
    def get_file(name: str) -> FileResponse:
        path = storage.resolve_upload(name)
        if path is None:
            raise HTTPException(status_code=400, detail="invalid file name")
        if not path.is_file():
            raise HTTPException(status_code=404, detail="file not found")
        return FileResponse(path, media_type=PDF_MIME_TYPE)

    return app


def main() -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    port = int(os.environ.get("PORT", DEFAULT_PORT))
    data_dir = os.environ.get("PAPERSCOPE_DATA_DIR", DEFAULT_DATA_DIR)
    logger.info("Serving %s on port %d", data_dir, port)
    uvicorn.run(create_app(data_dir), host="0.0.0.0", port=port)


__all__ = [
    "PaperStorage",
    "create_app",
    "decode_file_data",
    "main",
]
