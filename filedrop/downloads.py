from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from filedrop.codes import normalize_code
from filedrop.errors import ArtifactUnavailable, CodeNotFound, RangeNotSatisfiable
from filedrop.session_store import SessionStore, UploadSession


def parse_range(range_header: str, total: int) -> tuple[int, int]:
    """Resolve a single ``bytes=`` range against an artifact of ``total`` bytes.

    Supports ``start-end``, ``start-`` and the ``-suffix`` form. An end past
    the last byte is clamped; anything else out of bounds is rejected.
    """
    if not range_header.startswith("bytes="):
        raise RangeNotSatisfiable("invalid range header", total)
    ranges = range_header.removeprefix("bytes=").strip()
    if "," in ranges:
        raise RangeNotSatisfiable("multiple ranges are not supported", total)
    parts = ranges.split("-", 1)
    if len(parts) != 2:
        raise RangeNotSatisfiable("invalid range format", total)

    start_text, end_text = parts[0].strip(), parts[1].strip()
    try:
        if not start_text:
            suffix = int(end_text)
            if suffix <= 0:
                raise RangeNotSatisfiable("empty suffix range", total)
            start, end = max(0, total - suffix), total - 1
        else:
            start = int(start_text)
            end = int(end_text) if end_text else total - 1
    except ValueError as exc:
        raise RangeNotSatisfiable("invalid range format", total) from exc

    end = min(end, total - 1)
    if start < 0 or start >= total or end < start:
        raise RangeNotSatisfiable("range out of bounds", total)
    return start, end


def content_disposition(file_name: str) -> str:
    return f"attachment; filename*=UTF-8''{quote(file_name, safe='')}"


@dataclass(frozen=True)
class ArtifactDownload:
    session: UploadSession
    path: Path
    start: int
    end: int
    total: int
    partial: bool
    block_size: int = 64 * 1024

    @property
    def status_code(self) -> int:
        return 206 if self.partial else 200

    @property
    def content_length(self) -> int:
        return self.end - self.start + 1

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "Accept-Ranges": "bytes",
            "Content-Disposition": content_disposition(self.session.file_name),
            "Content-Length": str(self.content_length),
        }
        if self.partial:
            headers["Content-Range"] = f"bytes {self.start}-{self.end}/{self.total}"
        return headers

    def iter_bytes(self) -> Iterator[bytes]:
        remaining = self.content_length
        with self.path.open("rb") as handle:
            handle.seek(self.start)
            while remaining > 0:
                block = handle.read(min(self.block_size, remaining))
                if not block:
                    break
                remaining -= len(block)
                yield block


class DownloadServer:
    def __init__(self, store: SessionStore, block_size: int = 64 * 1024) -> None:
        self.store = store
        self.block_size = block_size

    def _completed(self, code: str) -> UploadSession:
        normalized = normalize_code(code)
        session = self.store.get_by_code(normalized) if normalized else None
        if session is None or not session.complete:
            raise CodeNotFound(normalized)
        return session

    def meta(self, code: str) -> UploadSession:
        return self._completed(code)

    def fetch(self, code: str, range_header: str | None = None) -> ArtifactDownload:
        session = self._completed(code)
        if not session.artifact_path:
            raise ArtifactUnavailable(f"artifact for {session.code} was never recorded", upload_id=session.session_id)
        path = Path(session.artifact_path)
        try:
            total = path.stat().st_size
        except FileNotFoundError as exc:
            raise ArtifactUnavailable(f"artifact for {session.code} is missing", upload_id=session.session_id) from exc

        if range_header:
            start, end = parse_range(range_header, total)
            return ArtifactDownload(session, path, start, end, total, partial=True, block_size=self.block_size)
        return ArtifactDownload(session, path, 0, total - 1, total, partial=False, block_size=self.block_size)
