class ApiError(Exception):
    """Base for every error the API turns into a {message, data} response."""

    status_code = 500
    message = "Internal Server Error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(ApiError):
    status_code = 400
    message = "Bad Request"


class InvalidReferenceError(ApiError):
    # a referenced entity id does not exist
    status_code = 400
    message = "Bad Request"


class ConflictError(ApiError):
    status_code = 400
    message = "Bad Request"


class NotFoundError(ApiError):
    status_code = 404

    def __init__(self, entity: str):
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.message = f"{entity} Not Found"


class StoreError(ApiError):
    status_code = 500
    message = "Internal Server Error"
