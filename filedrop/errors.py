class TransferError(Exception):
    """Base class for failures the HTTP layer reports to the client."""

    status_code = 500
    error_code = "internal_error"

    def __init__(self, detail: str, upload_id: str | None = None) -> None:
        super().__init__(detail)
        self.detail = detail
        self.upload_id = upload_id


class InvalidRequest(TransferError):
    status_code = 400
    error_code = "invalid_request"


class IndexOutOfRange(TransferError):
    status_code = 400
    error_code = "index_out_of_range"

    def __init__(self, upload_id: str, index: int, total_chunks: int) -> None:
        super().__init__(f"chunk index {index} outside [0, {total_chunks})", upload_id=upload_id)
        self.index = index
        self.total_chunks = total_chunks


class IncompleteUpload(TransferError):
    status_code = 400
    error_code = "incomplete_upload"

    def __init__(self, upload_id: str, missing: list[int]) -> None:
        super().__init__(f"upload is missing {len(missing)} chunk(s)", upload_id=upload_id)
        self.missing = missing


class SessionNotFound(TransferError):
    status_code = 404
    error_code = "session_not_found"

    def __init__(self, upload_id: str) -> None:
        super().__init__("upload session not found", upload_id=upload_id)


class CodeNotFound(TransferError):
    status_code = 404
    error_code = "code_not_found"

    def __init__(self, code: str) -> None:
        super().__init__("code not found or file not ready")
        self.code = code


class SessionAlreadyComplete(TransferError):
    status_code = 409
    error_code = "session_complete"

    def __init__(self, upload_id: str) -> None:
        super().__init__("upload is already complete and no longer accepts chunks", upload_id=upload_id)


class RangeNotSatisfiable(TransferError):
    status_code = 416
    error_code = "range_not_satisfiable"

    def __init__(self, detail: str, total: int) -> None:
        super().__init__(detail)
        self.total = total


class MissingChunk(TransferError):
    error_code = "missing_chunk"

    def __init__(self, upload_id: str, index: int) -> None:
        super().__init__(f"staged chunk {index} is missing", upload_id=upload_id)
        self.index = index


class StoreCorrupt(TransferError):
    error_code = "store_corrupt"


class StoreIOError(TransferError):
    error_code = "store_io_error"


class StoreReadError(StoreIOError):
    pass


class StoreWriteError(StoreIOError):
    pass


class ArtifactUnavailable(TransferError):
    error_code = "artifact_unavailable"


class CodeSpaceExhausted(TransferError):
    error_code = "code_space_exhausted"


class CodeCollision(Exception):
    """Raised by a store when a code is already indexed; callers draw a new one."""

    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.code = code
