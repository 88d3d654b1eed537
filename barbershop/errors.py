"""Domain errors raised by the pricing, discount and appointment services.

Every error carries the HTTP status it maps to and a short machine-readable
code, so routes can render ``{"success": false, "error": ..., "message": ...}``
without knowing which service raised it.
"""
from __future__ import annotations

from flask import jsonify


class ApiError(Exception):
    status_code = 500
    error = "internal_error"
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, error: str | None = None) -> None:
        self.message = message or self.default_message
        if error:
            self.error = error
        super().__init__(self.message)

    def to_response(self):
        body = {"success": False, "error": self.error, "message": self.message}
        return jsonify(body), self.status_code


class ValidationError(ApiError):
    status_code = 400
    error = "invalid_payload"
    default_message = "Invalid request payload"


class InvalidTransition(ValidationError):
    error = "invalid_transition"


class DiscountNotApplicable(ValidationError):
    error = "discount_not_applicable"
    default_message = "Discount code does not apply to any selected package"


class AuthenticationRequired(ApiError):
    status_code = 401
    error = "unauthorized"
    default_message = "Invalid or missing token"


class PermissionDenied(ApiError):
    status_code = 403
    error = "forbidden"
    default_message = "Permission denied"


class NotFoundError(ApiError):
    status_code = 404
    error = "not_found"

    def __init__(self, entity: str, message: str | None = None) -> None:
        self.entity = entity
        super().__init__(message or f"{entity} not found")


class PackageNotFound(NotFoundError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__("Package", message)


class DiscountNotFound(NotFoundError):
    error = "invalid_discount_code"

    def __init__(self, message: str | None = None) -> None:
        super().__init__("Discount code", message)


class ConflictError(ApiError):
    status_code = 409
    error = "conflict"
    default_message = "Conflicting request"


class DiscountAlreadyUsed(ConflictError):
    error = "discount_already_used"
    default_message = "This client has already used the discount code"


class InternalError(ApiError):
    pass
