from typing import Optional

_CONFLICT_CODES = {
    "invalid_status",
    "in_use",
    "already_created",
    "duplicate_vouchernumber",
    "finalized",
    "po_closed",
}


class ProcurementError(Exception):
    """Raised when a procurement operation fails."""

    def __init__(self, message: str, code: str = "procurement_error", field: Optional[str] = None):
        self.message = message
        self.code = code
        self.field = field
        super().__init__(message)

    @property
    def http_status(self) -> int:
        if self.code == "not_found":
            return 404
        if self.code in _CONFLICT_CODES:
            return 409
        return 400

    def as_errors(self) -> dict:
        return {self.field or self.code: self.message}
