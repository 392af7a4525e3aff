from pathlib import Path

import pytest

from filedrop.errors import MissingChunk
from filedrop.merge import ChunkMerger
from filedrop.storage import LocalChunkStorage


def test_merge_concatenates_in_index_order_and_discards_chunks(tmp_path: Path) -> None:
    storage = LocalChunkStorage(tmp_path)
    for idx in (2, 0, 1):
        storage.write_chunk("upload-1", idx, f"<{idx}>".encode() * 3)

    artifact = ChunkMerger(storage, block_size=2).merge("upload-1", 3, "CODE2345")

    assert artifact == storage.artifact_path("CODE2345")
    assert artifact.read_bytes() == b"<0><0><0><1><1><1><2><2><2>"
    assert storage.staged_indexes("upload-1") == set()
    assert not artifact.with_name(artifact.name + ".partial").exists()


def test_missing_chunk_is_detected_before_anything_is_written(tmp_path: Path) -> None:
    storage = LocalChunkStorage(tmp_path)
    storage.write_chunk("upload-1", 0, b"a")
    storage.write_chunk("upload-1", 2, b"c")

    with pytest.raises(MissingChunk) as excinfo:
        ChunkMerger(storage).merge("upload-1", 3, "CODE2345")

    assert excinfo.value.index == 1
    assert storage.staged_indexes("upload-1") == {0, 2}
    assert list((tmp_path / "files").iterdir()) == []


def test_io_failure_removes_partial_output(tmp_path: Path, monkeypatch) -> None:
    storage = LocalChunkStorage(tmp_path)
    storage.write_chunk("upload-1", 0, b"a")
    storage.write_chunk("upload-1", 1, b"b")

    def failing_fsync(fd):
        raise OSError("no space left on device")

    monkeypatch.setattr("filedrop.merge.os.fsync", failing_fsync)
    with pytest.raises(OSError):
        ChunkMerger(storage).merge("upload-1", 2, "CODE2345")

    assert list((tmp_path / "files").iterdir()) == []
