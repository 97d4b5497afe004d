"""Error taxonomy for the registry. Each error knows its HTTP status and category."""

from __future__ import annotations

from typing import Any


class RegistryError(Exception):
    """Base class; handlers turn it into ``{"success": false, "error", "message"}``."""

    status_code = 500
    error = "internal_error"

    def __init__(self, message: str, *, details: list[str] | None = None, **extra: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.extra = extra

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": False, "error": self.error, "message": self.message}
        if self.details:
            payload["details"] = self.details
        payload.update(self.extra)
        return payload


class ValidationError(RegistryError):
    status_code = 400
    error = "validation_error"

    def __init__(self, details: list[str], **extra: Any) -> None:
        super().__init__("; ".join(details), details=details, **extra)


class InvalidIdError(RegistryError):
    status_code = 400
    error = "invalid_id"

    def __init__(self, value: Any) -> None:
        if isinstance(value, (list, tuple)):
            invalid = [str(v) for v in value]
            super().__init__("Invalid patient IDs: " + ", ".join(invalid), invalidIds=invalid)
        else:
            super().__init__(f"'{value}' is not a valid patient ID", id=str(value))


class NotFoundError(RegistryError):
    status_code = 404
    error = "not_found"

    def __init__(self, patient_id: Any) -> None:
        super().__init__(f"Patient '{patient_id}' was not found", id=str(patient_id))


class DuplicatePhoneError(RegistryError):
    status_code = 409
    error = "duplicate_phone"

    def __init__(self, tel: str | None = None) -> None:
        if tel is None:
            super().__init__("A patient with this phone number already exists")
        else:
            super().__init__(f"A patient with phone number {tel} already exists", tel=tel)


class IllegalStateError(RegistryError):
    status_code = 400
    error = "illegal_state"


class RecordDeletedError(IllegalStateError):
    status_code = 410
    error = "patient_deleted"

    def __init__(self, patient_id: Any) -> None:
        super().__init__(
            f"Patient '{patient_id}' has been deleted; restore it before changing it",
            id=str(patient_id),
        )


class NotDeletedError(IllegalStateError):
    error = "not_deleted"

    def __init__(self, patient_id: Any) -> None:
        super().__init__(f"Patient '{patient_id}' is not deleted", id=str(patient_id))


class StoreUnavailableError(RegistryError):
    status_code = 503
    error = "store_unavailable"

    def __init__(self, message: str = "The patient store is unavailable, please retry later") -> None:
        super().__init__(message)
