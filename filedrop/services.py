from dataclasses import dataclass
from pathlib import Path

from filedrop.codes import build_code_generator
from filedrop.config import settings
from filedrop.coordinator import UploadCoordinator
from filedrop.db import Base, SessionLocal, engine
from filedrop.downloads import DownloadServer
from filedrop.merge import ChunkMerger
from filedrop.session_store import JsonSessionStore, SessionStore, SqlSessionStore
from filedrop.storage import LocalChunkStorage


@dataclass
class TransferServices:
    store: SessionStore
    storage: LocalChunkStorage
    coordinator: UploadCoordinator
    downloads: DownloadServer


def build_session_store(storage_root: str | Path) -> SessionStore:
    backend = settings.session_backend.lower()
    if backend == "json":
        return JsonSessionStore(Path(storage_root) / "index.json")
    if backend == "sql":
        if settings.database_auto_create:
            Base.metadata.create_all(bind=engine)
        return SqlSessionStore(SessionLocal)
    raise ValueError(f"unsupported session backend: {settings.session_backend}")


def build_services(storage_root: str | Path | None = None, store: SessionStore | None = None) -> TransferServices:
    root = storage_root or settings.storage_root
    storage = LocalChunkStorage(root)
    store = store or build_session_store(root)
    coordinator = UploadCoordinator(
        store=store,
        storage=storage,
        merger=ChunkMerger(storage, block_size=settings.merge_block_size),
        codes=build_code_generator(),
        default_max_downloads=settings.default_max_downloads,
    )
    downloads = DownloadServer(store, block_size=settings.download_block_size)
    return TransferServices(store=store, storage=storage, coordinator=coordinator, downloads=downloads)


services = build_services()


def get_coordinator() -> UploadCoordinator:
    return services.coordinator


def get_download_server() -> DownloadServer:
    return services.downloads
