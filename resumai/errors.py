"""Error taxonomy shared by the backend, the AI client and the gateway.

Every error carries the HTTP status the backend answers with, so route
handlers can simply raise and let the exception handler in ``main`` render
``{"error": message}``.
"""


class ResumAIError(Exception):
    status_code = 500
    default_message = "Server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ResumAIError):
    status_code = 400
    default_message = "Missing fields"


class AuthError(ResumAIError):
    status_code = 401
    default_message = "Unauthorized"


class InvalidCredentials(AuthError):
    default_message = "Invalid email or password"


class ForbiddenError(ResumAIError):
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(ResumAIError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ResumAIError):
    status_code = 409
    default_message = "Conflict"


class DuplicateUser(ConflictError):
    default_message = "User already exists"


class ExtractionError(ResumAIError):
    status_code = 422
    default_message = "Extraction failed. Please try pasting the text manually."


class TransportError(ResumAIError):
    status_code = 502
    default_message = "Remote service unreachable"


class AITimeout(TransportError):
    status_code = 504
    default_message = "AI request timed out"


class MalformedResponse(ResumAIError):
    status_code = 502
    default_message = "Failed to parse AI response as JSON"

    def __init__(self, message: str = None, raw: str = ""):
        super().__init__(message)
        # First 500 characters only, for diagnostics
        self.raw = (raw or "")[:500]


class MissingCredential(ResumAIError):
    status_code = 503
    default_message = "GEMINI_API_KEY is not configured"


class ServerError(ResumAIError):
    status_code = 500
