from fastapi import HTTPException, status


class ValidationError(HTTPException):
    """Input rejected synchronously; never retried automatically."""

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"{entity} {entity_id} not found")


class CreatorNotFoundError(NotFoundError):
    def __init__(self, creator_id: str):
        super().__init__("Creator", creator_id)


class SubmissionNotFoundError(NotFoundError):
    def __init__(self, submission_id: str):
        super().__init__("Submission", submission_id)


class WithdrawalNotFoundError(NotFoundError):
    def __init__(self, withdrawal_id: str):
        super().__init__("Withdrawal", withdrawal_id)


class InvalidTransitionError(HTTPException):
    def __init__(self, entity: str, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{entity} is '{current}', cannot move to '{target}'",
        )


class ConcurrencyError(HTTPException):
    """A conditional ledger/state update lost a race with another writer."""

    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class UnauthorizedError(HTTPException):
    def __init__(self, detail: str = "Invalid or missing authentication"):
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "Admin access required"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class UploadError(Exception):
    """Network failure or timeout while transferring bytes to the blob store."""

    def __init__(self, message: str, *, path: str | None = None):
        super().__init__(message)
        self.path = path


class TranscriptionError(Exception):
    """Soft failure from the transcription service.

    ``kind`` is ``too_large`` (recorded as skipped) or ``service_error`` /
    ``not_configured`` (recorded as failed).
    """

    def __init__(self, kind: str, reason: str):
        super().__init__(reason)
        self.kind = kind
        self.reason = reason
