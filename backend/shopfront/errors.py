from typing import Optional

from flask import jsonify
from werkzeug.exceptions import HTTPException


class ShopError(Exception):
    kind = "error"
    status_code = 500
    default_message = "Something went wrong."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self):
        return {"success": False, "error": self.kind, "message": self.message}


class ValidationError(ShopError):
    kind = "validation_error"
    status_code = 400
    default_message = "The request payload is invalid."


class InvalidOrderError(ValidationError):
    kind = "invalid_order"
    default_message = "The order could not be built from the supplied items."


class UnauthorizedError(ShopError):
    kind = "unauthorized"
    status_code = 401
    default_message = "Not authorized."


class ForbiddenError(ShopError):
    kind = "forbidden"
    status_code = 403
    default_message = "You are not allowed to access this resource."


class NotFoundError(ShopError):
    kind = "not_found"
    status_code = 404
    default_message = "Resource not found."


class ConflictError(ShopError):
    kind = "conflict"
    status_code = 409
    default_message = "The resource is not in a state that allows this action."


class IntegrityError(ShopError):
    """Payment evidence that does not hold up. The order is left untouched."""

    kind = "integrity_error"
    status_code = 400


class SignatureMismatchError(IntegrityError):
    kind = "signature_mismatch"
    default_message = "Invalid payment signature."


class AmountMismatchError(IntegrityError):
    kind = "amount_mismatch"
    default_message = "Captured amount does not match the order total."


class PaymentNotCapturedError(IntegrityError):
    kind = "payment_not_captured"
    default_message = "The payment has not been captured."


class GatewayError(ShopError):
    kind = "gateway_error"
    status_code = 502
    default_message = "The payment provider rejected the request."


class GatewayUnavailableError(GatewayError):
    kind = "gateway_unavailable"
    status_code = 503
    default_message = "The payment provider is unavailable. Please retry."


class StoreUnavailableError(ShopError):
    kind = "store_unavailable"
    status_code = 503
    default_message = "The database is unavailable."


def register_error_handlers(app):
    @app.errorhandler(ShopError)
    def handle_shop_error(exc: ShopError):
        return jsonify(exc.to_payload()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        message = "Route not found" if exc.code == 404 else exc.description
        return (
            jsonify({"success": False, "error": exc.name.lower().replace(" ", "_"), "message": message}),
            exc.code,
        )

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        app.logger.exception("Unhandled error: %s", exc)
        return (
            jsonify(
                {
                    "success": False,
                    "error": "internal_error",
                    "message": "Internal server error",
                }
            ),
            500,
        )
