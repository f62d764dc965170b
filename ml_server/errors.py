from __future__ import annotations

from typing import Any, Optional


class DispatchError(Exception):
    """
    Base class for failures surfaced by the dispatcher to a transport adapter.

    `code` is the stable wire tag; `status_code` is the HTTP mapping.
    """

    code: str = "dispatch_error"
    status_code: int = 500

    def __init__(self, detail: str, *, model_type: Optional[str] = None) -> None:
        super().__init__(detail)
        self.detail = str(detail)
        self.model_type = model_type

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.code, "detail": self.detail, "model_type": self.model_type}


class UnknownModelError(DispatchError):
    """Unrecognized model tag (client error)."""

    code = "unknown_model"
    status_code = 400


class InvalidInputError(DispatchError):
    """Payload does not match the schema of the resolved model kind (client error)."""

    code = "invalid_input"
    status_code = 400


class InternalDispatchError(DispatchError):
    """Encode/compute fault that should not occur for well-formed input."""

    code = "internal"
    status_code = 500


class AdminUpdatesDisabledError(DispatchError):
    """Reconfiguration requested while ADMIN_UPDATES_ENABLED=0."""

    code = "forbidden"
    status_code = 403


class RegistryLookupError(LookupError):
    """
    Raised when a kind is not present in the executor registry.

    The registry is built from the closed ModelKind set, so this indicates a
    programming error and must never be defaulted.
    """
