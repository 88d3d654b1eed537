"""HTTP routes for the barbershop backend."""
from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request
from itsdangerous import BadSignature, URLSafeTimedSerializer
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException
from werkzeug.security import check_password_hash

from . import appointments as appointment_service
from . import discounts as discount_service
from .errors import (ApiError, AuthenticationRequired, InternalError,
                     PermissionDenied, ValidationError)
from .extensions import db
from .models import AuthAccount, User
from .validators import parse_id

bp = Blueprint("api", __name__)


def _ok(data: object, message: str | None = None, status: int = 200):
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def _database_error(exc: SQLAlchemyError, action: str):
    db.session.rollback()
    current_app.logger.exception(f"Failed to {action}", exc_info=exc)
    return (
        jsonify({"success": False, "error": "database_error", "message": f"Failed to {action}"}),
        500,
    )


def _json_body() -> dict:
    """The request body as a dict; an absent or unparsable body counts as empty."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _build_token(payload: dict[str, object]) -> str:
    serializer = URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")
    return serializer.dumps(payload)


def get_jwt_identity() -> int | None:
    """Extract and validate user_id from the Authorization header token.

    Returns the user_id if the token is valid, None if missing, expired or tampered.
    """
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]  # Remove "Bearer " prefix

    serializer = URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt="auth-token")
    try:
        payload = serializer.loads(token, max_age=current_app.config.get("TOKEN_MAX_AGE_SECONDS", 86400))
    except BadSignature:
        # Also covers SignatureExpired
        return None
    return payload.get("user_id") if isinstance(payload, dict) else None


def current_user() -> User:
    """The active user behind the bearer token, or 401."""
    user_id = get_jwt_identity()
    if user_id is None:
        raise AuthenticationRequired()
    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise AuthenticationRequired("User not found or inactive")
    return user


def require_role(*roles: str) -> User:
    user = current_user()
    if user.role not in roles:
        raise PermissionDenied(f"Only {' or '.join(roles)} can perform this action")
    return user


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
        schema:
          type: object
          properties:
            status:
              type: string
              example: ok
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


@bp.post("/auth/login")
def login() -> tuple[dict[str, object], int]:
    """Authenticate a user by email/password and return an access token.
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            email:
              type: string
            password:
              type: string
          required:
            - email
            - password
    responses:
      200:
        description: Login successful, returns access token
      400:
        description: Missing email or password
      401:
        description: Invalid email or password
      403:
        description: Account deactivated
      500:
        description: Server error
    """
    payload = _json_body()

    email = payload.get("email") or ""
    password = payload.get("password") or ""
    if not isinstance(email, str) or not isinstance(password, str):
        raise ValidationError("email and password must be strings")
    email = email.strip().lower()

    if not email or not password:
        return (
            jsonify({"success": False, "error": "invalid_payload", "message": "email and password are required"}),
            400,
        )

    record = (
        db.session.query(User, AuthAccount)
        .join(AuthAccount, AuthAccount.user_id == User.user_id)
        .filter(User.email == email)
        .first()
    )

    if not record:
        return jsonify({"success": False, "error": "unauthorized", "message": "invalid email or password"}), 401

    user, auth_account = record

    if not check_password_hash(auth_account.password_hash, password):
        return jsonify({"success": False, "error": "unauthorized", "message": "invalid email or password"}), 401

    if not user.is_active:
        return jsonify({"success": False, "error": "forbidden", "message": "account is deactivated"}), 403

    auth_account.last_login_at = datetime.now(timezone.utc)

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "update last login timestamp")

    token = _build_token({"user_id": user.user_id, "role": user.role})
    return _ok({"token": token, "user": user.to_dict_basic()}, "Login successful")


# --- Appointments -------------------------------------------------------------

@bp.post("/appointments")
def create_appointment() -> tuple[dict[str, object], int]:
    """Book an appointment, optionally with one or more discount codes.
    ---
    tags:
      - Appointments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - clientId
            - packageId
          properties:
            clientId:
              type: integer
            packageId:
              type: integer
            barberId:
              type: integer
            additionalPackages:
              type: array
              items:
                type: integer
            appointmentDate:
              type: string
              format: date-time
            notes:
              type: string
            discountCode:
              type: string
            multipleDiscountCodes:
              type: array
              items:
                type: object
                properties:
                  code:
                    type: string
                  appliedToPackages:
                    type: array
                    items:
                      type: integer
    responses:
      201:
        description: Appointment created
      400:
        description: Missing fields or discount not applicable
      404:
        description: Client, package, barber or discount code not found
      409:
        description: Discount code already used by this client
      500:
        description: Database error
    """
    payload = _json_body()
    data = appointment_service.CreateAppointmentInput.from_payload(payload)

    try:
        appointment = appointment_service.create_appointment(data)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "create appointment")

    return _ok(appointment.to_dict(), "Appointment created successfully", 201)


@bp.get("/appointments")
def list_appointments() -> tuple[dict[str, object], int]:
    """List all appointments, newest first.
    ---
    tags:
      - Appointments
    security:
      - Bearer: []
    responses:
      200:
        description: Appointment list
      401:
        description: Missing or invalid token
    """
    current_user()
    try:
        appointments = appointment_service.list_appointments()
    except SQLAlchemyError as exc:
        return _database_error(exc, "fetch appointments")

    return _ok([appt.to_dict() for appt in appointments])


@bp.get("/appointments/<appointment_id>")
def get_appointment(appointment_id: str) -> tuple[dict[str, object], int]:
    """Get a single appointment.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        schema:
          type: integer
    responses:
      200:
        description: Appointment details
      401:
        description: Missing or invalid token
      404:
        description: Appointment not found
    """
    current_user()
    appointment_id = parse_id(appointment_id, "appointmentId")
    try:
        appointment = appointment_service.get_appointment(appointment_id)
    except SQLAlchemyError as exc:
        return _database_error(exc, "fetch appointment")

    return _ok(appointment.to_dict())


@bp.get("/appointments/client/<client_id>")
def list_client_appointments(client_id: str) -> tuple[dict[str, object], int]:
    """Appointment history for one client. Public so clients can check their bookings.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: client_id
        required: true
        schema:
          type: integer
    responses:
      200:
        description: The client's appointments
      400:
        description: Invalid client ID
    """
    parsed_id = parse_id(client_id, "clientId")
    try:
        appointments = appointment_service.list_client_appointments(parsed_id)
    except SQLAlchemyError as exc:
        return _database_error(exc, "fetch client appointments")

    return _ok([appt.to_dict() for appt in appointments])


@bp.put("/appointments/<appointment_id>")
def update_appointment(appointment_id: str) -> tuple[dict[str, object], int]:
    """Change status, barber, notes, date or discounts of an appointment.

    Completing an appointment that has no barber assigns the acting Boss or Staff.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        schema:
          type: integer
      - in: body
        name: body
        required: true
        schema:
          properties:
            status:
              type: string
              enum: [pending, confirmed, completed, cancelled]
            barberId:
              type: integer
            notes:
              type: string
            appointmentDate:
              type: string
              format: date-time
            discountCode:
              type: string
            removeDiscount:
              type: boolean
    responses:
      200:
        description: Appointment updated
      400:
        description: Invalid status or transition
      401:
        description: Missing or invalid token
      403:
        description: Not allowed to change barber assignments
      404:
        description: Appointment not found
      500:
        description: Database error
    """
    user = current_user()
    appointment_id = parse_id(appointment_id, "appointmentId")
    payload = _json_body()
    data = appointment_service.UpdateAppointmentInput.from_payload(payload)

    try:
        appointment = appointment_service.update_appointment(appointment_id, data, user)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "update appointment")

    return _ok(appointment.to_dict(), "Appointment updated successfully")


@bp.patch("/appointments/<appointment_id>")
def edit_appointment(appointment_id: str) -> tuple[dict[str, object], int]:
    """Full edit by Boss or Staff, repricing when packages or discounts change.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        schema:
          type: integer
      - in: body
        name: body
        required: true
        schema:
          properties:
            packageId:
              type: integer
            additionalPackages:
              type: array
              items:
                type: integer
            status:
              type: string
            barberId:
              type: integer
            multipleDiscountCodes:
              type: array
              items:
                type: object
    responses:
      200:
        description: Appointment updated
      400:
        description: Invalid input
      403:
        description: Only Boss and Staff can edit appointments
      404:
        description: Appointment or package not found
      500:
        description: Database error
    """
    user = current_user()
    appointment_id = parse_id(appointment_id, "appointmentId")
    payload = _json_body()
    data = appointment_service.EditAppointmentInput.from_payload(payload)

    try:
        appointment = appointment_service.edit_appointment(appointment_id, data, user)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "edit appointment")

    return _ok(appointment.to_dict(), "Appointment updated successfully")


@bp.delete("/appointments/<appointment_id>")
def delete_appointment(appointment_id: str) -> tuple[dict[str, object], int]:
    """Delete an appointment and release its discount usages (Boss only).
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        schema:
          type: integer
    responses:
      200:
        description: Appointment deleted
      403:
        description: Only Boss can delete appointments
      404:
        description: Appointment not found
      500:
        description: Database error
    """
    user = current_user()
    appointment_id = parse_id(appointment_id, "appointmentId")
    try:
        appointment_service.delete_appointment(appointment_id, user)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "delete appointment")

    return _ok(None, "Appointment deleted successfully")


# --- Discount codes -----------------------------------------------------------

@bp.post("/discounts/validate")
def validate_discount() -> tuple[dict[str, object], int]:
    """Check whether a client may use a code, without consuming it.
    ---
    tags:
      - Discounts
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - code
            - clientId
          properties:
            code:
              type: string
            clientId:
              type: integer
    responses:
      200:
        description: Code terms and whether the client already used it
      400:
        description: Missing fields
      404:
        description: Unknown or inactive code, or unknown client
    """
    payload = _json_body()
    try:
        result = discount_service.validate_code(payload.get("code"), payload.get("clientId"))
    except SQLAlchemyError as exc:
        return _database_error(exc, "validate discount code")

    message = "Discount code already used by this client" if result["alreadyUsed"] else "Discount code is valid"
    return _ok(result, message)


@bp.get("/discounts")
def list_discounts() -> tuple[dict[str, object], int]:
    """List all discount codes with usage counts (Boss only).
    ---
    tags:
      - Discounts
    responses:
      200:
        description: Discount codes
      401:
        description: Missing or invalid token
      403:
        description: Boss role required
    """
    require_role("Boss")
    try:
        codes = discount_service.list_discount_codes()
    except SQLAlchemyError as exc:
        return _database_error(exc, "fetch discount codes")

    return _ok([code.to_dict() for code in codes])


@bp.post("/discounts")
def create_discount() -> tuple[dict[str, object], int]:
    """Create a discount code (Boss only).
    ---
    tags:
      - Discounts
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          required:
            - code
          properties:
            code:
              type: string
            description:
              type: string
            discountType:
              type: string
              enum: [percentage, fixed_amount]
            discountPercent:
              type: number
            discountAmount:
              type: number
            applicablePackages:
              type: array
              items:
                type: integer
    responses:
      201:
        description: Discount code created
      400:
        description: Invalid discount terms
      403:
        description: Boss role required
      409:
        description: Code already exists
    """
    user = require_role("Boss")
    payload = _json_body()
    try:
        discount_code = discount_service.create_discount_code(payload, user)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "create discount code")

    return _ok(discount_code.to_dict(), "Discount code created successfully", 201)


@bp.put("/discounts/<discount_code_id>")
def update_discount(discount_code_id: str) -> tuple[dict[str, object], int]:
    """Update a discount code (Boss only).
    ---
    tags:
      - Discounts
    parameters:
      - in: path
        name: discount_code_id
        required: true
        schema:
          type: integer
    responses:
      200:
        description: Discount code updated
      400:
        description: Invalid discount terms
      404:
        description: Discount code not found
      409:
        description: Code already exists
    """
    require_role("Boss")
    discount_code_id = parse_id(discount_code_id, "discountCodeId")
    payload = _json_body()
    try:
        discount_code = discount_service.update_discount_code(discount_code_id, payload)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "update discount code")

    return _ok(discount_code.to_dict(), "Discount code updated successfully")


@bp.patch("/discounts/<discount_code_id>/toggle-status")
def toggle_discount(discount_code_id: str) -> tuple[dict[str, object], int]:
    """Activate or deactivate a discount code (Boss only).
    ---
    tags:
      - Discounts
    responses:
      200:
        description: New status
      404:
        description: Discount code not found
    """
    require_role("Boss")
    discount_code_id = parse_id(discount_code_id, "discountCodeId")
    try:
        discount_code = discount_service.toggle_discount_code(discount_code_id)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "toggle discount code")

    state = "activated" if discount_code.is_active else "deactivated"
    return _ok(discount_code.to_dict(), f"Discount code {state} successfully")


@bp.delete("/discounts/<discount_code_id>")
def delete_discount(discount_code_id: str) -> tuple[dict[str, object], int]:
    """Delete an unused discount code (Boss only).
    ---
    tags:
      - Discounts
    responses:
      200:
        description: Discount code deleted
      404:
        description: Discount code not found
      409:
        description: Code has been used; deactivate it instead
    """
    require_role("Boss")
    discount_code_id = parse_id(discount_code_id, "discountCodeId")
    try:
        discount_service.delete_discount_code(discount_code_id)
        db.session.commit()
    except SQLAlchemyError as exc:
        return _database_error(exc, "delete discount code")

    return _ok(None, "Discount code deleted successfully")


def register_routes(app) -> None:
    from .routes_financial import bp_fin

    app.register_blueprint(bp)
    app.register_blueprint(bp_fin)

    @app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        # Nothing a failed request wrote may reach the next commit
        db.session.rollback()
        if exc.status_code >= 500:
            current_app.logger.error("%s: %s", exc.error, exc.message)
        return exc.to_response()

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        error = (exc.name or "error").lower().replace(" ", "_")
        return jsonify({"success": False, "error": error, "message": exc.description}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        db.session.rollback()
        current_app.logger.exception("Unhandled error", exc_info=exc)
        return InternalError().to_response()
