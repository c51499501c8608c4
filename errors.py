from flask import jsonify
from werkzeug.exceptions import HTTPException


# ==============================
# ERROR TAXONOMY
# ==============================
class ApiError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.message)
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFound(ApiError):
    status_code = 404
    message = "Not found"


class Unauthorized(ApiError):
    status_code = 401
    message = "Unauthorized"


class InvalidInput(ApiError):
    status_code = 400
    message = "Invalid data"


class Conflict(ApiError):
    """Business rule violation: duplicate or self subscription, lost race."""
    status_code = 400
    message = "Conflict"


# ==============================
# HANDLERS
# ==============================
def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(error):
        return jsonify({"message": error.message}), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({"message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        app.logger.exception("Unhandled error: %s", error)
        return jsonify({"message": "Internal server error"}), 500
