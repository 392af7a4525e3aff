from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitUploadRequest(CamelModel):
    # Presence and positivity are checked by the coordinator so that missing
    # fields surface as invalid_request rather than a schema error.
    file_name: str | None = None
    file_size: int | None = None
    mime_type: str | None = None
    total_chunks: int | None = None
    chunk_size: int | None = None
    fingerprint: str | None = None
    max_downloads: int | None = None
    upload_id: str | None = None


class InitUploadResponse(CamelModel):
    upload_id: str
    code: str
    uploaded_chunks: list[int]


class UploadStatusResponse(CamelModel):
    upload_id: str
    code: str
    complete: bool
    uploaded_chunks: list[int]
    total_chunks: int


class UploadChunkResponse(CamelModel):
    ok: bool = True


class CompleteUploadResponse(CamelModel):
    ok: bool = True
    code: str


class DownloadMetaResponse(CamelModel):
    code: str
    file_name: str
    file_size: int
    mime_type: str
    remaining_downloads: int


class ErrorResponse(BaseModel):
    detail: str
    error_code: str
    request_id: str | None = None
    upload_id: str | None = None
    trace_id: str | None = None
    missing_chunks: list[int] | None = None
