# services/errors.py
# Errors raised while handling a /process request. Each one knows the HTTP
# status it maps to; main.py renders them as plain-text responses.


class ImageServiceError(Exception):
    """Base class for errors that terminate a request."""
    status_code = 500
    prefix = "Internal error"

    def __init__(self, cause: str = ""):
        self.cause = str(cause)
        message = f"{self.prefix}: {self.cause}" if self.cause else self.prefix
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)


class MethodNotAllowed(ImageServiceError):
    status_code = 405
    prefix = "POST only"

    def __init__(self, method: str = ""):
        self.method = method
        super().__init__(f"{method} is not supported" if method else "")


class MalformedForm(ImageServiceError):
    status_code = 400
    prefix = "Could not parse form"

    def __init__(self, cause: str = "", too_large: bool = False):
        if too_large:
            self.status_code = 413
        super().__init__(cause)


class MissingFile(ImageServiceError):
    status_code = 400
    prefix = "Missing 'image' file field"


class InvalidParameter(ImageServiceError):
    status_code = 400
    prefix = "Invalid parameter"


class InvalidImage(ImageServiceError):
    status_code = 400
    prefix = "Invalid image"


class EncodeFailure(ImageServiceError):
    status_code = 500
    prefix = "Failed to encode image"
