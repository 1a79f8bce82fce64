from typing import List, Optional


class PaymentError(Exception):
    """Base for every error the API turns into a structured failure response."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.code, "message": self.message}


class ValidationError(PaymentError):
    status_code = 400
    code = "validation_error"


class AuthenticationError(PaymentError):
    status_code = 401
    code = "unauthorized"


class NotFoundError(PaymentError):
    status_code = 404
    code = "not_found"

    def __init__(self, message: str = "Payment not found"):
        super().__init__(message)


class SessionMismatchError(PaymentError):
    status_code = 403
    code = "session_mismatch"

    def __init__(self, message: str = "Session does not match this payment"):
        super().__init__(message)


class FraudSuspectedError(PaymentError):
    status_code = 403
    code = "fraud_suspected"

    def __init__(
        self,
        reasons: Optional[List[str]] = None,
        message: str = "Security check failed. Please contact support.",
    ):
        super().__init__(message)
        self.reasons = list(reasons or [])

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["reasons"] = self.reasons
        return body


class PaymentExpiredError(PaymentError):
    status_code = 410
    code = "payment_expired"

    def __init__(self, message: str = "Payment reference has expired. Please generate a new one."):
        super().__init__(message)


class DuplicateRequestError(PaymentError):
    status_code = 429
    code = "duplicate_request"

    def __init__(self, message: str = "Duplicate payment request. Please wait before retrying."):
        super().__init__(message)
