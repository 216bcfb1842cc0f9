"""Exception hierarchy for the record pipeline."""


class MedvaultError(Exception):
    """Base class for all pipeline errors"""


class EmptyInput(MedvaultError, ValueError):
    """Raised when an empty plaintext or identifier reaches encrypt/derive"""


class DecryptionFailure(MedvaultError):
    """Raised for a wrong key or a corrupted/truncated ciphertext"""


class NotFound(MedvaultError, KeyError):
    """Raised when a content identifier is unknown to the active backend"""

    def __init__(self, content_id, detail=None):
        self.content_id = content_id
        self.detail = detail
        message = f"Content not found: {content_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)

    def __str__(self):
        return self.args[0]


class BackendUnavailable(MedvaultError):
    """Raised when no content store endpoint answered and degraded mode is disabled"""

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])


class StoreError(MedvaultError):
    """Raised when a live content store rejects a request"""


class LedgerError(MedvaultError):
    """Raised when a ledger call cannot be built or is reverted"""
