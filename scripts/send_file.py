import argparse
import json
import math
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

import httpx

DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024
STATE_FILE = Path.home() / ".filedrop-uploads.json"


def _fingerprint(path: Path) -> str:
    stat = path.stat()
    return f"{path.name}_{stat.st_size}_{int(stat.st_mtime * 1000)}"


def _load_state() -> dict:
    if not STATE_FILE.exists():
        return {}
    try:
        return json.loads(STATE_FILE.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return {}


def _save_state(state: dict) -> None:
    STATE_FILE.write_text(json.dumps(state, indent=2), encoding="utf-8")


def _read_chunk(path: Path, index: int, chunk_size: int) -> bytes:
    with path.open("rb") as handle:
        handle.seek(index * chunk_size)
        return handle.read(chunk_size)


def send_file(
    client: httpx.Client,
    base_url: str,
    path: Path,
    chunk_size: int,
    workers: int,
    max_downloads: int,
    mime_type: str,
) -> dict:
    started = time.perf_counter()
    file_size = path.stat().st_size
    total_chunks = math.ceil(file_size / chunk_size)
    fingerprint = _fingerprint(path)
    state = _load_state()

    init_resp = client.post(
        f"{base_url}/api/upload/init",
        json={
            "fileName": path.name,
            "fileSize": file_size,
            "mimeType": mime_type,
            "totalChunks": total_chunks,
            "chunkSize": chunk_size,
            "fingerprint": fingerprint,
            "maxDownloads": max_downloads,
            "uploadId": state.get(fingerprint),
        },
        timeout=30.0,
    )
    init_resp.raise_for_status()
    payload = init_resp.json()
    upload_id = payload["uploadId"]
    already = set(payload["uploadedChunks"])
    state[fingerprint] = upload_id
    _save_state(state)

    pending = [idx for idx in range(total_chunks) if idx not in already]
    latencies_ms: list[float] = []

    def _upload_chunk(index: int) -> None:
        t0 = time.perf_counter()
        resp = client.post(
            f"{base_url}/api/upload/{upload_id}/chunk",
            params={"index": index},
            content=_read_chunk(path, index, chunk_size),
            headers={"Content-Type": "application/octet-stream"},
            timeout=120.0,
        )
        resp.raise_for_status()
        latencies_ms.append((time.perf_counter() - t0) * 1000)

    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        futures = [pool.submit(_upload_chunk, idx) for idx in pending]
        for fut in as_completed(futures):
            fut.result()

    complete = client.post(f"{base_url}/api/upload/{upload_id}/complete", timeout=300.0)
    complete.raise_for_status()
    state.pop(fingerprint, None)
    _save_state(state)

    return {
        "upload_id": upload_id,
        "code": complete.json()["code"],
        "file_bytes": file_size,
        "chunks_total": total_chunks,
        "chunks_sent": len(pending),
        "chunks_resumed": len(already),
        "total_ms": round((time.perf_counter() - started) * 1000, 3),
        "chunk_latency_ms_avg": round(sum(latencies_ms) / len(latencies_ms), 3) if latencies_ms else 0.0,
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Upload a file to filedrop and print its pickup code.")
    parser.add_argument("path", help="File to upload")
    parser.add_argument("--base-url", default=os.getenv("FILEDROP_BASE_URL", "http://127.0.0.1:3000"))
    parser.add_argument("--chunk-size-bytes", type=int, default=DEFAULT_CHUNK_SIZE)
    parser.add_argument("--workers", type=int, default=4, help="Parallel chunk uploads")
    parser.add_argument("--max-downloads", type=int, default=1)
    parser.add_argument("--mime-type", default="application/octet-stream")
    args = parser.parse_args()

    path = Path(args.path)
    if not path.is_file() or path.stat().st_size == 0:
        print(f"[FAIL] {path} is not a non-empty file")
        return 1

    with httpx.Client() as client:
        try:
            summary = send_file(
                client,
                args.base_url.rstrip("/"),
                path,
                args.chunk_size_bytes,
                args.workers,
                args.max_downloads,
                args.mime_type,
            )
        except httpx.HTTPError as exc:
            print(f"[FAIL] upload interrupted: {exc}. Re-run the same command to resume.")
            return 2

    print("Upload summary:")
    for key, value in summary.items():
        print(f"- {key}: {value}")
    print(f"\nPickup code: {summary['code']}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
