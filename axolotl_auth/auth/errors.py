"""Authorization flow errors and their HTTP rendering."""

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AuthFlowError(Exception):
    """A request the flow refuses, with the status and error code to report."""

    def __init__(self, status_code: int, error: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message

    @classmethod
    def invalid_request(cls, message: str) -> "AuthFlowError":
        return cls(status.HTTP_400_BAD_REQUEST, "invalid_request", message)

    @classmethod
    def storage_error(cls, message: str) -> "AuthFlowError":
        return cls(status.HTTP_500_INTERNAL_SERVER_ERROR, "storage_error", message)

    @classmethod
    def bad_request(cls, error: str, message: str) -> "AuthFlowError":
        return cls(status.HTTP_400_BAD_REQUEST, error, message)

    @classmethod
    def unauthorized(cls, error: str, message: str) -> "AuthFlowError":
        return cls(status.HTTP_401_UNAUTHORIZED, error, message)

    @classmethod
    def identity_unavailable(cls) -> "AuthFlowError":
        return cls(
            status.HTTP_502_BAD_GATEWAY,
            "identity_unavailable",
            "Identity service unavailable",
        )


async def auth_flow_error_handler(request: Request, exc: AuthFlowError) -> JSONResponse:
    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "message": exc.message},
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "invalid_request", "message": "Malformed request"},
    )
