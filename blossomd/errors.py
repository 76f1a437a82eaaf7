"""Error taxonomy for Blossom endpoints. Each error knows its status code and renders itself."""

from typing import Dict, Optional

from fastapi import status
from fastapi.responses import JSONResponse, Response

CORS_HEADERS: Dict[str, str] = {"Access-Control-Allow-Origin": "*"}


class BlossomError(Exception):
    """Base error: JSON body {"detail": message} plus X-Reason header with the same message."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, headers: Optional[Dict[str, str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.headers = dict(headers or {})

    def response_headers(self) -> Dict[str, str]:
        return {**CORS_HEADERS, "X-Reason": self.message, **self.headers}

    def to_response(self) -> Response:
        return JSONResponse(
            status_code=self.status_code,
            content={"detail": self.message},
            headers=self.response_headers(),
        )


class ValidationError(BlossomError):
    """Malformed hash, pubkey, path, header or body."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthError(BlossomError):
    """Missing, invalid or expired authorization."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(BlossomError):
    """Valid authorization for a pubkey that is not allowed."""

    status_code = status.HTTP_403_FORBIDDEN


class NotFoundError(BlossomError):
    status_code = status.HTTP_404_NOT_FOUND


class SizeLimitError(BlossomError):
    status_code = 413


class RangeNotSatisfiableError(BlossomError):
    """Malformed or out-of-bounds Range header. Rendered without a body."""

    status_code = 416

    def __init__(self, size: int, headers: Optional[Dict[str, str]] = None) -> None:
        super().__init__("Invalid range", headers)
        self.size = size
        self.headers["Content-Range"] = f"bytes */{size}"

    def to_response(self) -> Response:
        return Response(status_code=self.status_code, headers=self.response_headers())


class InternalError(BlossomError):
    """Disk I/O failure or cache persistence failure while serving a request."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
