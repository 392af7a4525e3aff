import os
import shutil
from pathlib import Path

from filedrop.errors import MissingChunk
from filedrop.storage import LocalChunkStorage


class ChunkMerger:
    def __init__(self, storage: LocalChunkStorage, block_size: int = 1024 * 1024) -> None:
        self.storage = storage
        self.block_size = block_size

    def merge(self, session_id: str, total_chunks: int, artifact_name: str) -> Path:
        """Concatenate staged chunks 0..total_chunks-1 into the artifact.

        Every staged chunk is checked before anything is written, so a
        ``MissingChunk`` leaves the staging area untouched. Each chunk is
        discarded once it has been appended. The artifact only appears under
        its final name after the last chunk lands.
        """
        for index in range(total_chunks):
            if not self.storage.has_chunk(session_id, index):
                raise MissingChunk(session_id, index)

        target = self.storage.artifact_path(artifact_name)
        partial = target.with_name(target.name + ".partial")
        try:
            with partial.open("wb") as output:
                for index in range(total_chunks):
                    chunk_path = self.storage.chunk_path(session_id, index)
                    try:
                        with chunk_path.open("rb") as chunk:
                            shutil.copyfileobj(chunk, output, self.block_size)
                    except FileNotFoundError as exc:
                        raise MissingChunk(session_id, index) from exc
                    output.flush()
                    self.storage.discard_chunk(session_id, index)
                os.fsync(output.fileno())
            os.replace(partial, target)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        return target
