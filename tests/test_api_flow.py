import math
import os
from pathlib import Path

from fastapi.testclient import TestClient

from filedrop.main import app


def _payload(size: int) -> bytes:
    pattern = b"filedrop-payload-"
    return (pattern * math.ceil(size / len(pattern)))[:size]


def _init_upload(client: TestClient, file_size: int, chunk_size: int, **extra) -> dict:
    body = {
        "fileName": "sample.bin",
        "fileSize": file_size,
        "mimeType": "application/octet-stream",
        "totalChunks": math.ceil(file_size / chunk_size),
        "chunkSize": chunk_size,
        "fingerprint": f"sample.bin_{file_size}_0",
        "maxDownloads": 3,
    }
    body.update(extra)
    response = client.post("/api/upload/init", json=body)
    assert response.status_code == 200, response.text
    return response.json()


def _send_chunks(client: TestClient, upload_id: str, data: bytes, chunk_size: int, order=None) -> None:
    total = math.ceil(len(data) / chunk_size)
    for idx in order if order is not None else range(total):
        response = client.post(
            f"/api/upload/{upload_id}/chunk",
            params={"index": idx},
            content=data[idx * chunk_size : (idx + 1) * chunk_size],
        )
        assert response.status_code == 200, response.text
        assert response.json() == {"ok": True}


def test_end_to_end_upload_complete_download(transfer) -> None:
    data = os.urandom(12_000_000)
    with TestClient(app) as client:
        init = _init_upload(client, file_size=len(data), chunk_size=5_000_000)
        assert init["uploadedChunks"] == []
        assert len(init["code"]) == 8

        status = client.get(f"/api/upload/status/{init['uploadId']}").json()
        assert status["totalChunks"] == 3
        assert status["complete"] is False

        _send_chunks(client, init["uploadId"], data, 5_000_000)

        complete = client.post(f"/api/upload/{init['uploadId']}/complete")
        assert complete.status_code == 200
        assert complete.json() == {"ok": True, "code": init["code"]}

        download = client.get(f"/api/download/{init['code']}")
        assert download.status_code == 200
        assert download.headers["Content-Length"] == "12000000"
        assert download.headers["Accept-Ranges"] == "bytes"
        assert download.content == data


def test_range_request_returns_partial_content(transfer) -> None:
    data = _payload(1000)
    with TestClient(app) as client:
        init = _init_upload(client, file_size=1000, chunk_size=300)
        _send_chunks(client, init["uploadId"], data, 300)
        assert client.post(f"/api/upload/{init['uploadId']}/complete").status_code == 200

        partial = client.get(f"/api/download/{init['code']}", headers={"Range": "bytes=0-99"})
        assert partial.status_code == 206
        assert partial.headers["Content-Length"] == "100"
        assert partial.headers["Content-Range"] == "bytes 0-99/1000"
        assert partial.content == data[:100]

        tail = client.get(f"/api/download/{init['code']}", headers={"Range": "bytes=990-"})
        assert tail.status_code == 206
        assert tail.content == data[990:]

        suffix = client.get(f"/api/download/{init['code']}", headers={"Range": "bytes=-5"})
        assert suffix.headers["Content-Range"] == "bytes 995-999/1000"
        assert suffix.content == data[-5:]

        full = client.get(f"/api/download/{init['code']}")
        assert full.status_code == 200
        assert full.headers["Content-Length"] == "1000"
        assert "Content-Range" not in full.headers


def test_unsatisfiable_range_returns_416(transfer) -> None:
    data = _payload(10)
    with TestClient(app) as client:
        init = _init_upload(client, file_size=10, chunk_size=10)
        _send_chunks(client, init["uploadId"], data, 10)
        client.post(f"/api/upload/{init['uploadId']}/complete")

        response = client.get(f"/api/download/{init['code']}", headers={"Range": "bytes=10-20"})
        assert response.status_code == 416
        assert response.headers["Content-Range"] == "bytes */10"
        assert response.json()["error_code"] == "range_not_satisfiable"


def test_chunks_in_reverse_order_merge_in_index_order(transfer) -> None:
    data = _payload(23)
    with TestClient(app) as client:
        init = _init_upload(client, file_size=23, chunk_size=5)
        _send_chunks(client, init["uploadId"], data, 5, order=[4, 3, 2, 1, 0])
        assert client.post(f"/api/upload/{init['uploadId']}/complete").status_code == 200
        assert client.get(f"/api/download/{init['code']}").content == data


def test_init_rejects_missing_or_non_positive_fields(transfer) -> None:
    with TestClient(app) as client:
        cases = [
            {"fileSize": 10, "totalChunks": 1, "chunkSize": 10},
            {"fileName": "a.bin", "totalChunks": 1, "chunkSize": 10},
            {"fileName": "a.bin", "fileSize": 10, "totalChunks": 1, "chunkSize": 0},
            {"fileName": "a.bin", "fileSize": -4, "totalChunks": 1, "chunkSize": 10},
            {"fileName": "a.bin", "fileSize": 10, "totalChunks": 3, "chunkSize": 10},
            {"fileName": "a.bin", "fileSize": "ten", "totalChunks": 1, "chunkSize": 10},
            {"fileName": "a.bin", "fileSize": 10, "totalChunks": 1, "chunkSize": 10, "maxDownloads": 0},
        ]
        for body in cases:
            response = client.post("/api/upload/init", json=body)
            assert response.status_code == 400, body
            assert response.json()["error_code"] == "invalid_request"


def test_init_with_resumable_id_returns_same_session(transfer) -> None:
    with TestClient(app) as client:
        first = _init_upload(client, file_size=8, chunk_size=4)
        _send_chunks(client, first["uploadId"], b"efgh", 4, order=[0])

        again = _init_upload(client, file_size=8, chunk_size=4, uploadId=first["uploadId"])
        assert again["uploadId"] == first["uploadId"]
        assert again["code"] == first["code"]
        assert again["uploadedChunks"] == [0]


def test_init_with_unknown_or_completed_id_creates_new_session(transfer) -> None:
    with TestClient(app) as client:
        unknown = _init_upload(client, file_size=4, chunk_size=4, uploadId="no-such-upload")
        assert unknown["uploadId"] != "no-such-upload"

        _send_chunks(client, unknown["uploadId"], b"abcd", 4)
        client.post(f"/api/upload/{unknown['uploadId']}/complete")

        fresh = _init_upload(client, file_size=4, chunk_size=4, uploadId=unknown["uploadId"])
        assert fresh["uploadId"] != unknown["uploadId"]
        assert fresh["code"] != unknown["code"]
        assert fresh["uploadedChunks"] == []


def test_status_of_unknown_upload_is_404(transfer) -> None:
    with TestClient(app) as client:
        response = client.get("/api/upload/status/missing-upload")
        assert response.status_code == 404
        assert response.json()["error_code"] == "session_not_found"


def test_chunk_index_validation(transfer) -> None:
    with TestClient(app) as client:
        init = _init_upload(client, file_size=8, chunk_size=4)
        for index in (-1, 2, 99):
            response = client.post(f"/api/upload/{init['uploadId']}/chunk", params={"index": index}, content=b"x")
            assert response.status_code == 400
            assert response.json()["error_code"] == "index_out_of_range"

        no_index = client.post(f"/api/upload/{init['uploadId']}/chunk", content=b"x")
        assert no_index.status_code == 400
        assert no_index.json()["error_code"] == "invalid_request"

        unknown = client.post("/api/upload/missing-upload/chunk", params={"index": 0}, content=b"x")
        assert unknown.status_code == 404


def test_reuploading_an_index_is_idempotent_and_last_write_wins(transfer) -> None:
    with TestClient(app) as client:
        init = _init_upload(client, file_size=8, chunk_size=4)
        upload_id = init["uploadId"]
        _send_chunks(client, upload_id, b"aaaa", 4, order=[0])
        _send_chunks(client, upload_id, b"zzzz", 4, order=[0])

        status = client.get(f"/api/upload/status/{upload_id}").json()
        assert status["uploadedChunks"] == [0]
        assert transfer.storage.read_chunk(upload_id, 0) == b"zzzz"

        _send_chunks(client, upload_id, b"----bbbb", 4, order=[1])
        client.post(f"/api/upload/{upload_id}/complete")
        assert client.get(f"/api/download/{init['code']}").content == b"zzzzbbbb"


def test_complete_requires_every_chunk(transfer) -> None:
    with TestClient(app) as client:
        init = _init_upload(client, file_size=12, chunk_size=4)
        upload_id = init["uploadId"]
        for sent in ([], [0], [0, 2]):
            _send_chunks(client, upload_id, b"abcdefghijkl", 4, order=sent)
            response = client.post(f"/api/upload/{upload_id}/complete")
            assert response.status_code == 400
            payload = response.json()
            assert payload["error_code"] == "incomplete_upload"
            assert payload["missing_chunks"] == [idx for idx in range(3) if idx not in sent]


def test_complete_is_idempotent_and_removes_staging(transfer) -> None:
    with TestClient(app) as client:
        init = _init_upload(client, file_size=4, chunk_size=4)
        upload_id = init["uploadId"]
        _send_chunks(client, upload_id, b"abcd", 4)

        first = client.post(f"/api/upload/{upload_id}/complete")
        second = client.post(f"/api/upload/{upload_id}/complete")
        assert first.json() == second.json() == {"ok": True, "code": init["code"]}

        assert not transfer.storage.staging_dir(upload_id).exists()
        assert transfer.storage.artifact_path(init["code"]).read_bytes() == b"abcd"
        assert client.get(f"/api/upload/status/{upload_id}").json()["complete"] is True


def test_chunk_after_complete_is_rejected(transfer) -> None:
    with TestClient(app) as client:
        init = _init_upload(client, file_size=4, chunk_size=4)
        _send_chunks(client, init["uploadId"], b"abcd", 4)
        client.post(f"/api/upload/{init['uploadId']}/complete")

        late = client.post(f"/api/upload/{init['uploadId']}/chunk", params={"index": 0}, content=b"zzzz")
        assert late.status_code == 409
        assert late.json()["error_code"] == "session_complete"
        assert not transfer.storage.staging_dir(init["uploadId"]).exists()


def test_meta_and_download_for_unknown_or_unfinished_code_are_404(transfer) -> None:
    with TestClient(app) as client:
        for path in ("/api/download/NOPE2345/meta", "/api/download/NOPE2345"):
            response = client.get(path)
            assert response.status_code == 404
            assert response.json()["error_code"] == "code_not_found"

        init = _init_upload(client, file_size=4, chunk_size=4)
        assert client.get(f"/api/download/{init['code']}/meta").status_code == 404
        assert client.get(f"/api/download/{init['code']}").status_code == 404


def test_meta_reports_file_details_and_is_case_insensitive(transfer) -> None:
    with TestClient(app) as client:
        init = _init_upload(client, file_size=4, chunk_size=4, fileName="notes.txt", mimeType="text/plain")
        _send_chunks(client, init["uploadId"], b"abcd", 4)
        client.post(f"/api/upload/{init['uploadId']}/complete")

        meta = client.get(f"/api/download/{init['code'].lower()}/meta")
        assert meta.status_code == 200
        assert meta.json() == {
            "code": init["code"],
            "fileName": "notes.txt",
            "fileSize": 4,
            "mimeType": "text/plain",
            "remainingDownloads": 3,
        }


def test_download_limit_is_advisory(transfer) -> None:
    with TestClient(app) as client:
        init = _init_upload(client, file_size=4, chunk_size=4, maxDownloads=1)
        _send_chunks(client, init["uploadId"], b"abcd", 4)
        client.post(f"/api/upload/{init['uploadId']}/complete")

        for _ in range(3):
            assert client.get(f"/api/download/{init['code']}").status_code == 200
        assert client.get(f"/api/download/{init['code']}/meta").json()["remainingDownloads"] == 1


def test_content_disposition_carries_utf8_file_name(transfer) -> None:
    with TestClient(app) as client:
        init = _init_upload(client, file_size=4, chunk_size=4, fileName="报告 final.txt")
        _send_chunks(client, init["uploadId"], b"abcd", 4)
        client.post(f"/api/upload/{init['uploadId']}/complete")

        response = client.get(f"/api/download/{init['code']}")
        assert response.headers["Content-Disposition"] == (
            "attachment; filename*=UTF-8''%E6%8A%A5%E5%91%8A%20final.txt"
        )
        assert Path(transfer.storage.artifact_path(init["code"])).name == f"{init['code']}.bin"
