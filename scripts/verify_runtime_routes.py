import json
import os

import httpx


def main() -> int:
    base_url = os.getenv("VERIFY_BASE_URL", "http://127.0.0.1:3000").rstrip("/")
    print(f"Checking runtime at {base_url}")
    with httpx.Client(base_url=base_url, timeout=10.0) as client:
        try:
            health = client.get("/health")
        except Exception as exc:
            print(f"[FAIL] Could not connect to service: {exc}")
            return 1

        print(f"[INFO] /health status={health.status_code}")
        if health.status_code != 200:
            print("[FAIL] /health is not healthy.")
            return 1

        version = client.get("/version")
        print(f"[INFO] /version status={version.status_code} X-Filedrop-App-Version={version.headers.get('X-Filedrop-App-Version')}")
        if version.status_code == 200:
            print(f"[OK] version payload: {json.dumps(version.json(), sort_keys=True)}")

        probe = client.get("/api/download/ZZZZZZZZ/meta")
        print(f"[INFO] unknown code probe status={probe.status_code}")
        if probe.status_code != 404:
            print("[FAIL] unknown code should be a 404, not a server fault.")
            return 2

        init = client.post("/api/upload/init", json={"fileName": "probe.bin"})
        print(f"[INFO] invalid init probe status={init.status_code}")
        if init.status_code != 400:
            print("[FAIL] init without sizes should be rejected with 400.")
            return 3

        print("[OK] transfer API routes are reachable.")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
