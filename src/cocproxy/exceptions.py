"""Custom exceptions for the cocproxy browser cache."""


class CocproxyError(Exception):
    """Base exception for cocproxy errors."""

    pass


class InvalidURLError(CocproxyError):
    """Raised when a request URL cannot be mapped to a storage path."""

    pass


class BodyCaptureError(CocproxyError):
    """Raised when a response body could not be retrieved from the browser."""

    def __init__(self, url: str, cause: BaseException):
        super().__init__(f"Failed to capture response body for {url}: {cause}")
        self.url = url
        self.cause = cause


class BrowserError(CocproxyError):
    """Raised when browser operations fail."""

    pass
