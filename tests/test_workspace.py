"""End-to-end tests for the workspace coordinator, against in-memory fakes."""

from __future__ import annotations

import asyncio

import pytest

from paperscope.errors import RateLimited, StorageWriteFailed
from paperscope.models import LLMSettings, UploadedFile


async def _settle(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def _files(*names: str) -> list[UploadedFile]:
    return [UploadedFile(name=f"{n}.pdf", data=n.encode()) for n in names]


@pytest.fixture
async def workspace(make_workspace):
    ws = make_workspace(max_parallel=2)
    yield ws
    await ws.close()


# ============================================================================
# Upload and analysis
# ============================================================================


class TestUpload:
    async def test_concurrency_cap_with_three_uploads(self, workspace, fake_analyzer):
        fake_analyzer.block()
        created = await workspace.upload(_files("A", "B", "C"))
        await _settle()

        statuses = [workspace.store.get(r.id).analysis_status for r in created]
        assert statuses == ["analyzing", "analyzing", "idle"]
        assert fake_analyzer.calls == [b"A", b"B"]

        fake_analyzer.release()
        await workspace.join()

        assert fake_analyzer.max_active == 2
        titles = [workspace.store.get(r.id).analysis.title for r in created]
        assert titles == ["Title of A", "Title of B", "Title of C"]
        assert all(workspace.store.get(r.id).sync_status == "saved" for r in created)

    async def test_records_persisted_with_final_result(self, workspace, fake_bridge):
        await workspace.upload(_files("A"), tags=["ml", " ml", ""])
        await workspace.join()

        record = workspace.store.get("paper-1")
        assert record.tags == ("ml",)
        assert record.file_size == 1
        assert record.upload_time == 1_700_000_000_000
        assert record.content == "/api/files/paper-1.pdf"

        last = fake_bridge.saved_for("paper-1")[-1]
        assert last.analysis_status == "success"
        assert last.analysis.title == "Title of A"

    async def test_upload_rejected_when_backend_down(self, workspace, fake_bridge):
        fake_bridge.healthy = False
        with pytest.raises(StorageWriteFailed, match="upload rejected"):
            await workspace.upload(_files("A"))

        assert fake_bridge.papers_calls == 0
        assert len(workspace.store) == 0
        assert len(workspace.queue) == 0

    async def test_empty_upload_is_a_no_op(self, workspace, fake_bridge):
        assert await workspace.upload([]) == []
        assert fake_bridge.health_calls == 0

    async def test_upload_paths_reads_pdfs(self, workspace, tmp_path):
        pdf = tmp_path / "paper.PDF"
        pdf.write_bytes(b"%PDF-1.4")
        created = await workspace.upload_paths([pdf], ["cv"])
        await workspace.join()

        assert created[0].file_name == "paper.PDF"
        assert created[0].file_size == 8
        assert created[0].tags == ("cv",)

    async def test_upload_paths_rejects_non_pdf(self, workspace, tmp_path, fake_bridge):
        notes = tmp_path / "notes.txt"
        notes.write_text("hi")
        with pytest.raises(ValueError, match="not a PDF"):
            await workspace.upload_paths([notes])
        assert fake_bridge.health_calls == 0

    async def test_settings_snapshot_at_enqueue(self, workspace, fake_analyzer):
        workspace.update_settings(LLMSettings(language="English"))
        await workspace.upload(_files("A"))
        workspace.update_settings(LLMSettings(language="French"))
        await workspace.join()
        assert fake_analyzer.settings_seen[0].language == "English"


class TestAnalysisOutcome:
    async def test_failure_is_recorded_and_persisted(self, workspace, fake_analyzer, fake_bridge):
        fake_analyzer.failures[b"A"] = RateLimited("HTTP 429")
        await workspace.upload(_files("A"))
        await workspace.join()

        record = workspace.store.get("paper-1")
        assert record.analysis_status == "error"
        assert record.error_message == "Rate limited, retry later: HTTP 429"
        assert record.analysis is None
        assert fake_bridge.saved_for("paper-1")[-1].analysis_status == "error"

    async def test_one_failure_does_not_affect_others(self, workspace, fake_analyzer):
        fake_analyzer.failures[b"B"] = RuntimeError("kaput")
        await workspace.upload(_files("A", "B", "C"))
        await workspace.join()

        statuses = [r.analysis_status for r in workspace.store.all()]
        assert statuses == ["success", "error", "success"]

    async def test_missing_managed_credential(self, make_workspace, fake_bridge):
        fake_bridge.credential = None
        ws = make_workspace(analysis_client=None)
        try:
            await ws.upload(_files("A"))
            await ws.join()
        finally:
            await ws.close()

        record = ws.store.get("paper-1")
        assert record.analysis_status == "error"
        assert record.error_message.startswith("API key missing or rejected")

    async def test_tag_edit_during_analysis_survives(self, workspace, fake_analyzer, fake_bridge):
        fake_analyzer.block()
        await workspace.upload(_files("A"))
        await _settle()
        workspace.set_tags("paper-1", ["later"])

        fake_analyzer.release()
        await workspace.join()

        record = workspace.store.get("paper-1")
        assert record.tags == ("later",)
        assert record.analysis_status == "success"
        last = fake_bridge.saved_for("paper-1")[-1]
        assert last.tags == ("later",)
        assert last.analysis_status == "success"


# ============================================================================
# Retry and delete
# ============================================================================


class TestRetry:
    async def test_retry_after_failure(self, workspace, fake_analyzer):
        fake_analyzer.failures[b"A"] = RateLimited()
        await workspace.upload(_files("A"))
        await workspace.join()
        assert workspace.store.get("paper-1").analysis_status == "error"

        fake_analyzer.failures.clear()
        assert workspace.retry("paper-1") is True
        await workspace.join()

        record = workspace.store.get("paper-1")
        assert record.analysis_status == "success"
        assert record.error_message is None
        # Retry sends the stored reference, not the discarded bytes
        assert fake_analyzer.calls[-1] == "/api/files/paper-1.pdf"

    async def test_retry_while_pending_is_refused(self, workspace, fake_analyzer):
        fake_analyzer.block()
        await workspace.upload(_files("A"))
        await _settle()
        assert workspace.retry("paper-1") is False
        fake_analyzer.release()
        await workspace.join()
        assert len(fake_analyzer.calls) == 1

    async def test_retry_unknown_paper(self, workspace):
        assert workspace.retry("nope") is False


class TestDelete:
    async def test_delete_during_analysis_drops_result(
        self, workspace, fake_analyzer, fake_bridge
    ):
        fake_analyzer.block()
        await workspace.upload(_files("A"))
        await _settle()

        assert await workspace.delete("paper-1") is True
        saves_at_delete = len(fake_bridge.saved)

        fake_analyzer.release()
        await workspace.join()

        assert "paper-1" not in workspace.store
        assert fake_bridge.deleted == ["paper-1"]
        assert len(fake_bridge.saved) == saves_at_delete

    async def test_delete_queued_paper_never_runs(self, make_workspace, fake_analyzer):
        ws = make_workspace(max_parallel=1)
        fake_analyzer.block()
        try:
            await ws.upload(_files("A", "B"))
            await _settle()
            assert await ws.delete("paper-2") is True
            fake_analyzer.release()
            await ws.join()
        finally:
            await ws.close()
        assert fake_analyzer.calls == [b"A"]

    async def test_delete_unknown_paper(self, workspace, fake_bridge):
        assert await workspace.delete("nope") is False
        assert fake_bridge.deleted == []


# ============================================================================
# Session lifecycle
# ============================================================================


class TestStartAndHealth:
    async def test_start_loads_stored_papers(self, workspace, fake_bridge, make_record):
        fake_bridge.papers = [make_record("stored", content="/api/files/stored.pdf")]
        await workspace.start(poll=False)
        assert workspace.store.ids() == ["stored"]
        assert workspace.health.healthy

    async def test_local_record_wins_on_load(self, workspace, fake_bridge, make_record):
        workspace.store.add(make_record("a", tags=("local",)))
        fake_bridge.papers = [make_record("a", tags=("remote",)), make_record("b")]
        assert await workspace.load_papers() == 1
        assert workspace.store.get("a").tags == ("local",)

    async def test_start_skips_load_when_unreachable(self, workspace, fake_bridge):
        fake_bridge.healthy = False
        await workspace.start(poll=False)
        assert fake_bridge.list_calls == 0
        assert workspace.health.checked

    async def test_recovery_resyncs_failed_records(self, workspace, fake_bridge):
        await workspace.upload(_files("A"))
        await workspace.join()

        fake_bridge.healthy = False
        assert await workspace.recheck_health() is False
        workspace.set_tags("paper-1", ["offline-edit"])
        await workspace.join()
        assert workspace.store.get("paper-1").sync_status == "error"

        fake_bridge.healthy = True
        assert await workspace.recheck_health() is True
        await workspace.join()

        assert workspace.store.get("paper-1").sync_status == "saved"
        assert fake_bridge.saved_for("paper-1")[-1].tags == ("offline-edit",)


class TestManagedCredential:
    async def test_single_flight_and_cached(self, workspace, fake_bridge):
        first, second = await asyncio.gather(
            workspace.managed_credential(), workspace.managed_credential()
        )
        assert first == second == "managed-key"
        assert await workspace.managed_credential() == "managed-key"
        assert fake_bridge.credential_calls == 1

    async def test_missing_credential_is_refetched(self, workspace, fake_bridge):
        fake_bridge.credential = None
        assert await workspace.managed_credential() is None
        fake_bridge.credential = "late-key"
        assert await workspace.managed_credential() == "late-key"
        assert fake_bridge.credential_calls == 2


# ============================================================================
# Edits and comparison
# ============================================================================


class TestEdits:
    async def test_annotations(self, workspace, make_record):
        workspace.store.add(make_record("a"))
        workspace.add_annotation("a", "data:image/png;base64,AAAA")
        workspace.add_annotation("a", "data:image/png;base64,BBBB")
        record = workspace.remove_annotation("a", 0)
        assert record.annotations == ("data:image/png;base64,BBBB",)
        with pytest.raises(IndexError):
            workspace.remove_annotation("a", 5)
        await workspace.join()

    async def test_annotation_file(self, workspace, make_record, tmp_path):
        workspace.store.add(make_record("a"))
        shot = tmp_path / "figure.png"
        shot.write_bytes(b"\x89PNG\r\n")
        record = await workspace.add_annotation_file("a", shot)
        assert record.annotations[0].startswith("data:image/png;base64,")
        await workspace.join()

    async def test_annotation_file_rejects_non_image(self, workspace, make_record, tmp_path):
        workspace.store.add(make_record("a"))
        text = tmp_path / "notes.txt"
        text.write_text("hello")
        with pytest.raises(ValueError, match="not an image"):
            await workspace.add_annotation_file("a", text)

    async def test_edit_unknown_paper(self, workspace):
        with pytest.raises(KeyError):
            workspace.set_tags("nope", ["x"])

    async def test_export_annotation_writes_image(self, workspace, make_record, tmp_path):
        workspace.store.add(make_record("a"))
        workspace.add_annotation("a", "data:image/png;base64,iVBORw0K")
        path = await workspace.export_annotation("a", 0, tmp_path / "shots")
        assert path == tmp_path / "shots" / "a-1.png"
        assert path.read_bytes() == b"\x89PNG\r\n"
        with pytest.raises(IndexError):
            await workspace.export_annotation("a", 1, tmp_path)
        await workspace.join()

    async def test_export_annotation_rejects_corrupt_data(self, workspace, make_record, tmp_path):
        workspace.store.add(make_record("a", annotations=("data:image/png;base64,@@@",)))
        with pytest.raises(ValueError):
            await workspace.export_annotation("a", 0, tmp_path)


class TestAnalysisEdits:
    async def test_edit_is_persisted(self, workspace, fake_bridge, make_record, make_analysis):
        workspace.store.add(make_record("a").with_analysis(make_analysis()))

        record = workspace.update_analysis_field("a", "critique", "Small evaluation set")
        await workspace.join()

        assert record.analysis.critique == "Small evaluation set"
        assert record.analysis.title == "Attention Is All You Need"
        assert record.analysis_status == "success"
        assert fake_bridge.saved_for("a")[-1].analysis.critique == "Small evaluation set"
        assert workspace.store.get("a").sync_status == "saved"

    async def test_latest_edit_wins(self, workspace, fake_bridge, make_record, make_analysis):
        workspace.store.add(make_record("a").with_analysis(make_analysis()))
        workspace.update_analysis_field("a", "method", "first")
        workspace.update_analysis_field("a", "method", "second")
        await workspace.join()
        assert fake_bridge.saved_for("a")[-1].analysis.method == "second"

    @pytest.mark.parametrize("status", ["idle", "analyzing", "error"])
    async def test_rejected_without_finished_analysis(
        self, workspace, fake_bridge, make_record, status
    ):
        workspace.store.add(make_record("a", analysis_status=status))
        with pytest.raises(ValueError, match="no analysis"):
            workspace.update_analysis_field("a", "problem", "text")
        assert workspace.store.get("a").analysis is None
        assert fake_bridge.save_attempts == 0

    async def test_unknown_field_rejected(self, workspace, make_record, make_analysis):
        workspace.store.add(make_record("a").with_analysis(make_analysis()))
        with pytest.raises(ValueError, match="unknown analysis field"):
            workspace.update_analysis_field("a", "extra", "text")

    async def test_empty_title_rejected(self, workspace, make_record, make_analysis):
        workspace.store.add(make_record("a").with_analysis(make_analysis()))
        with pytest.raises(ValueError, match="title"):
            workspace.update_analysis_field("a", "title", "   ")
        assert workspace.store.get("a").analysis.title == "Attention Is All You Need"

    async def test_missing_paper(self, workspace):
        with pytest.raises(KeyError):
            workspace.update_analysis_field("nope", "problem", "text")

    async def test_compare_bypasses_queue(
        self, workspace, fake_analyzer, make_record, make_analysis
    ):
        workspace.store.add(make_record("a", analysis=make_analysis(title="A")))
        workspace.store.add(make_record("b", analysis=make_analysis(title="B")))

        result = await workspace.compare(["a", "b", "missing"])

        assert fake_analyzer.compare_calls == [["a", "b"]]
        assert [row.title for row in result.papers] == ["A", "B"]
        assert len(workspace.queue) == 0
