class IngestError(Exception):
    """
    Pipeline-fatal failure. Carries the HTTP status returned to the caller and
    the ingestion_logs status recorded for it (None means the attempt is not
    logged, e.g. it was rejected before a source URL was accepted).
    """

    status_code = 500
    log_status: str | None = "internal_error"
    public_message: str | None = None

    def __init__(self, message: str, public_message: str | None = None):
        super().__init__(message)
        if public_message is not None:
            self.public_message = public_message

    @property
    def error(self) -> str:
        return self.public_message or str(self)

    def payload(self) -> dict:
        return {"success": False, "error": self.error}


class Unauthorized(IngestError):
    status_code = 401
    log_status = None


class InvalidInput(IngestError):
    status_code = 400
    log_status = None


class InvalidUrl(InvalidInput):
    pass


class FetchTimeout(IngestError):
    status_code = 408
    log_status = "fetch_error"


class FetchError(IngestError):
    status_code = 502
    log_status = "fetch_error"

    def __init__(self, message: str, http_status: int | None = None):
        super().__init__(message)
        self.http_status = http_status


class UnsupportedContentType(IngestError):
    status_code = 400
    log_status = "fetch_error"


class ExtractedTextTooShort(IngestError):
    status_code = 422
    log_status = "fetch_error"
    public_message = "Extracted text too short — possibly paywalled or empty page."


class ExtractionServiceError(IngestError):
    status_code = 500
    log_status = "ai_validation_error"


class ExtractionParseError(IngestError):
    status_code = 500
    log_status = "ai_validation_error"


class PersistenceError(IngestError):
    status_code = 500
    log_status = "insert_error"


class DuplicateSource(IngestError):
    status_code = 409
    log_status = "duplicate"

    def __init__(self, existing_id, title: str | None = None):
        super().__init__(f'Already ingested: "{title or existing_id}"')
        self.existing_id = existing_id
        self.title = title

    def payload(self) -> dict:
        return {
            "success": False,
            "error": self.error,
            "duplicate": True,
            "existing_id": self.existing_id,
        }


class InternalError(IngestError):
    status_code = 500
    log_status = "internal_error"
    public_message = "Internal server error."
