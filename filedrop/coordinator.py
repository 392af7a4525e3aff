import math
import time
import uuid
from pathlib import Path

from filedrop.codes import CodeGenerator
from filedrop.errors import (
    CodeCollision,
    CodeSpaceExhausted,
    IncompleteUpload,
    IndexOutOfRange,
    InvalidRequest,
    SessionAlreadyComplete,
    SessionNotFound,
)
from filedrop.events import audit_event
from filedrop.locks import SessionGuard
from filedrop.merge import ChunkMerger
from filedrop.metrics import (
    bytes_uploaded_total,
    chunk_write_latency_seconds,
    chunks_uploaded_total,
    merge_failures_total,
    merge_latency_seconds,
    merges_total,
    store_update_latency_seconds,
)
from filedrop.session_store import SessionStore, UploadSession
from filedrop.storage import LocalChunkStorage
from filedrop.tracing import tracer

DEFAULT_MIME_TYPE = "application/octet-stream"


def _require_positive(name: str, value) -> int:
    if value is None or isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidRequest(f"{name} must be a positive integer")
    return value


class UploadCoordinator:
    def __init__(
        self,
        store: SessionStore,
        storage: LocalChunkStorage,
        merger: ChunkMerger,
        codes: CodeGenerator,
        guard: SessionGuard | None = None,
        default_max_downloads: int = 1,
    ) -> None:
        self.store = store
        self.storage = storage
        self.merger = merger
        self.codes = codes
        self.guard = guard or SessionGuard()
        self.default_max_downloads = default_max_downloads

    def _require(self, session_id: str) -> UploadSession:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _update(self, session_id: str, mutate) -> UploadSession:
        start = time.perf_counter()
        try:
            return self.store.update(session_id, mutate)
        finally:
            store_update_latency_seconds.observe(time.perf_counter() - start)

    def init(
        self,
        *,
        file_name: str | None,
        file_size: int | None,
        mime_type: str | None,
        total_chunks: int | None,
        chunk_size: int | None,
        fingerprint: str | None = None,
        max_downloads: int | None = None,
        resume_session_id: str | None = None,
    ) -> tuple[UploadSession, bool]:
        """Create a session, or hand back a live incomplete one.

        Returns the session and whether it was resumed.
        """
        if resume_session_id:
            existing = self.store.get(resume_session_id)
            if existing is not None and not existing.complete:
                return existing, True

        if not file_name or not isinstance(file_name, str) or not file_name.strip():
            raise InvalidRequest("fileName is required")
        file_size = _require_positive("fileSize", file_size)
        chunk_size = _require_positive("chunkSize", chunk_size)
        total_chunks = _require_positive("totalChunks", total_chunks)
        expected_chunks = math.ceil(file_size / chunk_size)
        if total_chunks != expected_chunks:
            raise InvalidRequest(f"totalChunks must be {expected_chunks} for fileSize={file_size} chunkSize={chunk_size}")
        if max_downloads is None:
            max_downloads = self.default_max_downloads
        max_downloads = _require_positive("maxDownloads", max_downloads)

        session_id = str(uuid.uuid4())
        for _ in range(max(1, self.codes.max_attempts)):
            code = self.codes.issue(self.store.code_exists)
            session = UploadSession(
                session_id=session_id,
                code=code,
                fingerprint=fingerprint,
                file_name=file_name,
                file_size=file_size,
                mime_type=mime_type or DEFAULT_MIME_TYPE,
                chunk_size=chunk_size,
                total_chunks=total_chunks,
                max_downloads=max_downloads,
            )
            try:
                self.store.insert(session)
                break
            except CodeCollision:
                # Lost a race for the code between the check and the commit.
                continue
        else:
            raise CodeSpaceExhausted("could not commit a unique code")
        self.storage.provision(session_id)
        return session, False

    def accept_chunk(self, session_id: str, index: int, data: bytes) -> UploadSession:
        session = self._require(session_id)
        if not 0 <= index < session.total_chunks:
            raise IndexOutOfRange(session_id, index, session.total_chunks)

        with self.guard.chunk_write(session_id):
            if self._require(session_id).complete:
                raise SessionAlreadyComplete(session_id)
            start = time.perf_counter()
            written = self.storage.write_chunk(session_id, index, data)
            chunk_write_latency_seconds.observe(time.perf_counter() - start)
            recorded = self._update(session_id, lambda draft: draft.record_chunk(index))
        chunks_uploaded_total.inc()
        bytes_uploaded_total.inc(written.size_bytes)
        return recorded

    def complete(self, session_id: str) -> UploadSession:
        session = self._require(session_id)
        if session.complete:
            return session

        with self.guard.merge(session_id):
            session = self._require(session_id)
            if session.complete:
                return session
            missing = session.missing_chunks()
            if missing:
                raise IncompleteUpload(session_id, missing)

            artifact = self._merged_artifact(session)
            if artifact is not None:
                # A previous merge finished but its store write failed.
                audit_event({"action": "merge_adopted", "upload_id": session_id, "code": session.code})
                return self._finish(session_id, artifact)

            start = time.perf_counter()
            with tracer.start_as_current_span("filedrop.merge") as span:
                span.set_attribute("filedrop.upload_id", session_id)
                span.set_attribute("filedrop.total_chunks", session.total_chunks)
                try:
                    artifact = self.merger.merge(session_id, session.total_chunks, session.code)
                except Exception as exc:
                    merge_failures_total.inc()
                    lost = self._reconcile_staged(session)
                    audit_event(
                        {
                            "action": "merge_failed",
                            "upload_id": session_id,
                            "detail": str(exc),
                            "requeued_chunks": lost,
                        }
                    )
                    raise
            merge_latency_seconds.observe(time.perf_counter() - start)
            merges_total.inc()
            return self._finish(session_id, artifact)

    def _finish(self, session_id: str, artifact: Path) -> UploadSession:
        completed = self._update(session_id, lambda draft: draft.mark_complete(str(artifact)))
        self.storage.remove_staging(session_id)
        return completed

    def _merged_artifact(self, session: UploadSession) -> Path | None:
        """Return the artifact left by a merge whose completion was never recorded."""
        artifact = self.storage.artifact_path(session.code)
        if self.storage.staged_indexes(session.session_id) or not artifact.is_file():
            return None
        return artifact

    def _reconcile_staged(self, session: UploadSession) -> list[int]:
        """Forget chunks a failed merge already consumed so the client re-sends only those."""
        staged = self.storage.staged_indexes(session.session_id)
        lost = sorted(session.uploaded_chunks - staged)
        if lost:
            self._update(session.session_id, lambda draft: draft.uploaded_chunks.difference_update(lost))
        return lost

    def status(self, session_id: str) -> UploadSession:
        return self._require(session_id)
