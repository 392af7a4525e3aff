from pathlib import Path

import pytest

from filedrop.main import app
from filedrop.services import TransferServices, build_services, get_coordinator, get_download_server
from filedrop.session_store import JsonSessionStore


@pytest.fixture
def transfer(tmp_path: Path):
    services: TransferServices = build_services(
        storage_root=tmp_path, store=JsonSessionStore(tmp_path / "index.json")
    )
    app.dependency_overrides[get_coordinator] = lambda: services.coordinator
    app.dependency_overrides[get_download_server] = lambda: services.downloads
    try:
        yield services
    finally:
        app.dependency_overrides.clear()
