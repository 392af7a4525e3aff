from __future__ import annotations

import copy
import enum
import json
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from filedrop.errors import CodeCollision, SessionNotFound, StoreCorrupt, StoreReadError, StoreWriteError
from filedrop.models import Upload, UploadChunk


class SessionStatus(str, enum.Enum):
    initiated = "INITIATED"
    ready_to_merge = "READY_TO_MERGE"
    complete = "COMPLETE"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UploadSession:
    session_id: str
    code: str
    file_name: str
    file_size: int
    mime_type: str
    chunk_size: int
    total_chunks: int
    fingerprint: str | None = None
    max_downloads: int = 1
    uploaded_chunks: set[int] = field(default_factory=set)
    complete: bool = False
    artifact_path: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def status(self) -> SessionStatus:
        if self.complete:
            return SessionStatus.complete
        if len(self.uploaded_chunks) >= self.total_chunks:
            return SessionStatus.ready_to_merge
        return SessionStatus.initiated

    def sorted_chunks(self) -> list[int]:
        return sorted(self.uploaded_chunks)

    def missing_chunks(self) -> list[int]:
        return [idx for idx in range(self.total_chunks) if idx not in self.uploaded_chunks]

    def record_chunk(self, index: int) -> None:
        if not 0 <= index < self.total_chunks:
            raise ValueError(f"chunk index {index} outside [0, {self.total_chunks})")
        self.uploaded_chunks.add(index)

    def mark_complete(self, artifact_path: str) -> None:
        if self.complete:
            return
        self.complete = True
        self.artifact_path = artifact_path
        self.completed_at = utc_now()

    def to_record(self) -> dict:
        return {
            "uploadId": self.session_id,
            "code": self.code,
            "fingerprint": self.fingerprint,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "mimeType": self.mime_type,
            "chunkSize": self.chunk_size,
            "totalChunks": self.total_chunks,
            "maxDownloads": self.max_downloads,
            "uploadedChunks": self.sorted_chunks(),
            "complete": self.complete,
            "filePath": self.artifact_path,
            "createdAt": self.created_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_record(cls, record: dict) -> "UploadSession":
        completed_at = record.get("completedAt")
        return cls(
            session_id=str(record["uploadId"]),
            code=str(record["code"]),
            fingerprint=record.get("fingerprint"),
            file_name=str(record["fileName"]),
            file_size=int(record["fileSize"]),
            mime_type=record.get("mimeType") or "application/octet-stream",
            chunk_size=int(record["chunkSize"]),
            total_chunks=int(record["totalChunks"]),
            max_downloads=int(record.get("maxDownloads") or 1),
            uploaded_chunks={int(idx) for idx in record.get("uploadedChunks") or []},
            complete=bool(record.get("complete", False)),
            artifact_path=record.get("filePath"),
            created_at=datetime.fromisoformat(record["createdAt"]),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
        )


class SessionStore:
    """Durable record of upload sessions plus the code index.

    Every mutation is one critical section: read the current record, apply the
    change to a copy, persist, then publish the copy. Readers only see copies.
    """

    def get(self, session_id: str) -> UploadSession | None:
        raise NotImplementedError

    def get_by_code(self, code: str) -> UploadSession | None:
        raise NotImplementedError

    def code_exists(self, code: str) -> bool:
        raise NotImplementedError

    def insert(self, session: UploadSession) -> None:
        raise NotImplementedError

    def put(self, session: UploadSession) -> None:
        raise NotImplementedError

    def update(self, session_id: str, mutate: Callable[[UploadSession], None]) -> UploadSession:
        raise NotImplementedError


class JsonSessionStore(SessionStore):
    def __init__(self, index_path: str | Path) -> None:
        self.index_path = Path(index_path)
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._sessions: dict[str, UploadSession] = {}
        self._codes: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if not self.index_path.exists():
            self._persist({}, {})
            return
        try:
            raw = json.loads(self.index_path.read_text(encoding="utf-8"))
            uploads = raw["uploads"]
            codes = raw["codes"]
            if not isinstance(uploads, dict) or not isinstance(codes, dict):
                raise TypeError("uploads and codes must be objects")
            sessions = {key: UploadSession.from_record(value) for key, value in uploads.items()}
        except OSError as exc:
            raise StoreReadError(f"cannot read session index {self.index_path}: {exc}") from exc
        except (ValueError, KeyError, TypeError) as exc:
            raise StoreCorrupt(f"session index {self.index_path} is unreadable: {exc}") from exc
        self._sessions = sessions
        self._codes = {str(code): str(session_id) for code, session_id in codes.items()}

    def _persist(self, sessions: dict[str, UploadSession], codes: dict[str, str]) -> None:
        payload = {
            "uploads": {session_id: session.to_record() for session_id, session in sessions.items()},
            "codes": codes,
        }
        tmp_path = self.index_path.with_name(self.index_path.name + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.index_path)
        except OSError as exc:
            raise StoreWriteError(f"failed to persist session index: {exc}") from exc

    def get(self, session_id: str) -> UploadSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return copy.deepcopy(session) if session else None

    def get_by_code(self, code: str) -> UploadSession | None:
        with self._lock:
            session_id = self._codes.get(code)
            session = self._sessions.get(session_id) if session_id else None
            return copy.deepcopy(session) if session else None

    def code_exists(self, code: str) -> bool:
        with self._lock:
            return code in self._codes

    def insert(self, session: UploadSession) -> None:
        with self._lock:
            if session.code in self._codes:
                raise CodeCollision(session.code)
            if session.session_id in self._sessions:
                raise ValueError(f"session {session.session_id} already exists")
            sessions = {**self._sessions, session.session_id: copy.deepcopy(session)}
            codes = {**self._codes, session.code: session.session_id}
            self._persist(sessions, codes)
            self._sessions, self._codes = sessions, codes

    def put(self, session: UploadSession) -> None:
        with self._lock:
            current = self._sessions.get(session.session_id)
            if current is None:
                raise SessionNotFound(session.session_id)
            if current.code != session.code:
                raise ValueError("session code is immutable")
            sessions = {**self._sessions, session.session_id: copy.deepcopy(session)}
            self._persist(sessions, self._codes)
            self._sessions = sessions

    def update(self, session_id: str, mutate: Callable[[UploadSession], None]) -> UploadSession:
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                raise SessionNotFound(session_id)
            draft = copy.deepcopy(current)
            mutate(draft)
            sessions = {**self._sessions, session_id: draft}
            self._persist(sessions, self._codes)
            self._sessions = sessions
            return copy.deepcopy(draft)


def _from_row(row: Upload) -> UploadSession:
    return UploadSession(
        session_id=row.id,
        code=row.code,
        fingerprint=row.fingerprint,
        file_name=row.file_name,
        file_size=row.file_size,
        mime_type=row.mime_type,
        chunk_size=row.chunk_size,
        total_chunks=row.total_chunks,
        max_downloads=row.max_downloads,
        uploaded_chunks={chunk.chunk_index for chunk in row.chunks},
        complete=row.complete,
        artifact_path=row.artifact_path,
        created_at=row.created_at,
        completed_at=row.completed_at,
    )


def _apply_to_row(row: Upload, session: UploadSession) -> None:
    row.fingerprint = session.fingerprint
    row.max_downloads = session.max_downloads
    row.complete = session.complete
    row.artifact_path = session.artifact_path
    row.completed_at = session.completed_at
    stored = {chunk.chunk_index: chunk for chunk in row.chunks}
    for index, chunk in stored.items():
        if index not in session.uploaded_chunks:
            row.chunks.remove(chunk)
    for index in sorted(session.uploaded_chunks - stored.keys()):
        row.chunks.append(UploadChunk(chunk_index=index))


class SqlSessionStore(SessionStore):
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._lock = Lock()

    def get(self, session_id: str) -> UploadSession | None:
        try:
            with self._session_factory() as db:
                row = db.get(Upload, session_id)
                return _from_row(row) if row else None
        except SQLAlchemyError as exc:
            raise StoreReadError(f"session lookup failed: {exc}") from exc

    def get_by_code(self, code: str) -> UploadSession | None:
        try:
            with self._session_factory() as db:
                row = db.scalar(select(Upload).where(Upload.code == code))
                return _from_row(row) if row else None
        except SQLAlchemyError as exc:
            raise StoreReadError(f"code lookup failed: {exc}") from exc

    def code_exists(self, code: str) -> bool:
        try:
            with self._session_factory() as db:
                return db.scalar(select(Upload.id).where(Upload.code == code)) is not None
        except SQLAlchemyError as exc:
            raise StoreReadError(f"code lookup failed: {exc}") from exc

    def insert(self, session: UploadSession) -> None:
        with self._lock, self._session_factory() as db:
            if db.scalar(select(Upload.id).where(Upload.code == session.code)) is not None:
                raise CodeCollision(session.code)
            db.add(
                Upload(
                    id=session.session_id,
                    code=session.code,
                    fingerprint=session.fingerprint,
                    file_name=session.file_name,
                    file_size=session.file_size,
                    mime_type=session.mime_type,
                    chunk_size=session.chunk_size,
                    total_chunks=session.total_chunks,
                    max_downloads=session.max_downloads,
                    complete=session.complete,
                    artifact_path=session.artifact_path,
                    created_at=session.created_at,
                    completed_at=session.completed_at,
                    chunks=[UploadChunk(chunk_index=idx) for idx in session.sorted_chunks()],
                )
            )
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise CodeCollision(session.code) from exc
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreWriteError(f"failed to insert session: {exc}") from exc

    def put(self, session: UploadSession) -> None:
        def _replace(draft: UploadSession) -> None:
            draft.fingerprint = session.fingerprint
            draft.max_downloads = session.max_downloads
            draft.uploaded_chunks = set(session.uploaded_chunks)
            draft.complete = session.complete
            draft.artifact_path = session.artifact_path
            draft.completed_at = session.completed_at

        self.update(session.session_id, _replace)

    def update(self, session_id: str, mutate: Callable[[UploadSession], None]) -> UploadSession:
        with self._lock, self._session_factory() as db:
            row = db.get(Upload, session_id)
            if row is None:
                raise SessionNotFound(session_id)
            draft = _from_row(row)
            mutate(draft)
            _apply_to_row(row, draft)
            try:
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise StoreWriteError(f"failed to update session {session_id}: {exc}") from exc
            return draft
