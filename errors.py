class PortfolioError(Exception):
    """Base error. `code` is stable and safe to expose to clients."""

    code = "error"
    status = 500
    default_message = "Something went wrong"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {"error": self.message, "code": self.code}


class ValidationError(PortfolioError):
    code = "validation_error"
    status = 400
    default_message = "Invalid request data"


class NotFound(PortfolioError):
    code = "not_found"
    status = 404
    default_message = "Record not found"


class OwnerNotFound(NotFound):
    code = "owner_not_found"
    default_message = "User not found"


class InvalidCredential(PortfolioError):
    code = "invalid_credential"
    status = 401
    default_message = "Invalid email or password"


class DuplicateAccount(PortfolioError):
    code = "duplicate_account"
    status = 409
    default_message = "Email already registered"


class StoreError(PortfolioError):
    code = "store_error"
    default_message = "Error accessing the data store"
