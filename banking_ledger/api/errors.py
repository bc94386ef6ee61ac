"""
Error kind to HTTP mapping and the response envelope
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from ..errors import BankingError, ErrorKind, Result
from ..logging_config import get_logger


logger = get_logger("banking_ledger.api")


ERROR_STATUS = {
    ErrorKind.NOT_FOUND_OR_NOT_ACCESSIBLE: (status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    ErrorKind.NOT_FOUND: (status.HTTP_404_NOT_FOUND, "NOT_FOUND"),
    ErrorKind.VALIDATION: (status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR"),
    ErrorKind.CURRENCY_MISMATCH: (status.HTTP_400_BAD_REQUEST, "CURRENCY_MISMATCH"),
    ErrorKind.INSUFFICIENT_FUNDS: (status.HTTP_409_CONFLICT, "INSUFFICIENT_FUNDS"),
    ErrorKind.CONFLICT: (status.HTTP_409_CONFLICT, "CONFLICT"),
    ErrorKind.INTERNAL: (status.HTTP_500_INTERNAL_SERVER_ERROR, "INTERNAL_ERROR"),
}

HTTP_CODES = {
    status.HTTP_400_BAD_REQUEST: "BAD_REQUEST",
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
}


def success(data: Any, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body = {"success": True, "data": data}
    if meta is not None:
        body["meta"] = meta
    return body


def error_body(code: str, message: str, details: Optional[Any] = None) -> Dict[str, Any]:
    error = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"success": False, "error": error}


def unwrap(result: Result) -> Any:
    """Return the success value; a failure is raised and mapped by the handlers"""
    return result.unwrap()


async def banking_error_handler(request: Request, exc: BankingError) -> JSONResponse:
    status_code, code = ERROR_STATUS[exc.kind]
    if exc.kind == ErrorKind.INTERNAL:
        logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message,
                     exc_info=(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=error_body(code, exc.message, exc.details))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("VALIDATION_ERROR", "Request validation failed", details)
    )


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = HTTP_CODES.get(exc.status_code, "ERROR")
    return JSONResponse(status_code=exc.status_code, content=error_body(code, str(exc.detail)),
                        headers=getattr(exc, "headers", None))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("INTERNAL_ERROR", "Internal server error")
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BankingError, banking_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
