class StoreError(Exception):
    """Base class for errors raised by the store services."""


class ValidationError(StoreError):
    pass


class DuplicateReferenceError(StoreError):
    def __init__(self, reference: str):
        self.reference = reference
        super().__init__("Transaction ID already exists. Please verify your payment details.")


class TransactionNotFoundError(StoreError):
    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


class CourseNotFoundError(StoreError):
    def __init__(self, course_id: int):
        self.course_id = course_id
        super().__init__(f"Course {course_id} not found")


INVALID_CREDENTIAL = "invalid-credential"
EMAIL_IN_USE = "email-already-in-use"
WEAK_PASSWORD = "weak-password"
CONFIGURATION_NOT_FOUND = "configuration-not-found"
INVALID_TOKEN = "invalid-token"

AUTH_ERROR_MESSAGES = {
    INVALID_CREDENTIAL: "Invalid Email or Password. If you are admin, please Register first.",
    EMAIL_IN_USE: "Email already registered",
    WEAK_PASSWORD: "Password must be at least 6 characters",
    CONFIGURATION_NOT_FOUND: "Authentication is not configured on the server.",
    INVALID_TOKEN: "Invalid token",
}


class AuthError(StoreError):
    def __init__(self, code: str):
        self.code = code
        super().__init__(AUTH_ERROR_MESSAGES.get(code, code))
