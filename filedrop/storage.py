import os
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class StorageWriteResult:
    key: str
    size_bytes: int


class LocalChunkStorage:
    """Staging area for incoming chunks plus the directory of merged artifacts.

    Layout under ``root``: ``tmp/<session_id>/<index>.part`` for staged chunks
    and ``files/<CODE>.bin`` for artifacts.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)
        self.staging_root = self.root / "tmp"
        self.artifact_root = self.root / "files"
        self.staging_root.mkdir(parents=True, exist_ok=True)
        self.artifact_root.mkdir(parents=True, exist_ok=True)

    def staging_dir(self, session_id: str) -> Path:
        return self.staging_root / session_id

    def chunk_key(self, session_id: str, chunk_index: int) -> str:
        return f"tmp/{session_id}/{chunk_index}.part"

    def chunk_path(self, session_id: str, chunk_index: int) -> Path:
        return self.root / self.chunk_key(session_id, chunk_index)

    def artifact_path(self, artifact_name: str) -> Path:
        return self.artifact_root / f"{artifact_name}.bin"

    def provision(self, session_id: str) -> Path:
        target = self.staging_dir(session_id)
        target.mkdir(parents=True, exist_ok=True)
        return target

    def write_chunk(self, session_id: str, chunk_index: int, data: bytes) -> StorageWriteResult:
        relative_key = self.chunk_key(session_id, chunk_index)
        full_path = self.root / relative_key
        full_path.parent.mkdir(parents=True, exist_ok=True)
        # Unique temp name per writer so parallel writes of one index never share a file.
        tmp_path = full_path.with_name(f"{full_path.name}.{uuid.uuid4().hex}.tmp")
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, full_path)
        finally:
            tmp_path.unlink(missing_ok=True)
        return StorageWriteResult(key=relative_key, size_bytes=len(data))

    def read_chunk(self, session_id: str, chunk_index: int) -> bytes:
        return self.chunk_path(session_id, chunk_index).read_bytes()

    def has_chunk(self, session_id: str, chunk_index: int) -> bool:
        return self.chunk_path(session_id, chunk_index).is_file()

    def staged_indexes(self, session_id: str) -> set[int]:
        base = self.staging_dir(session_id)
        if not base.exists():
            return set()
        indexes: set[int] = set()
        for path in base.glob("*.part"):
            stem = path.name.removesuffix(".part")
            if stem.isdigit():
                indexes.add(int(stem))
        return indexes

    def discard_chunk(self, session_id: str, chunk_index: int) -> None:
        self.chunk_path(session_id, chunk_index).unlink(missing_ok=True)

    def remove_staging(self, session_id: str) -> None:
        target = self.staging_dir(session_id)
        if target.exists():
            shutil.rmtree(target)
