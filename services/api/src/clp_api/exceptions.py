"""应用异常处理注册。"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clp_api.core.config import get_settings
from clp_api.errors import IdentityError
from clp_api.utils.response import DEFAULT_ERROR_MESSAGE, error_payload

logger = logging.getLogger("clp_api.exceptions")


def _default_http_error_code(status_code: int) -> str:
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "BAD_REQUEST"
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "UNAUTHORIZED"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "FORBIDDEN"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "NOT_FOUND"
    if status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
        return "METHOD_NOT_ALLOWED"
    if status_code == status.HTTP_409_CONFLICT:
        return "CONFLICT"
    return "HTTP_ERROR"


def _default_http_message(status_code: int) -> str:
    if status_code == status.HTTP_400_BAD_REQUEST:
        return "请求参数不合法。"
    if status_code == status.HTTP_401_UNAUTHORIZED:
        return "未登录或登录状态已失效。"
    if status_code == status.HTTP_403_FORBIDDEN:
        return "无权限访问该资源。"
    if status_code == status.HTTP_404_NOT_FOUND:
        return "请求资源不存在。"
    if status_code == status.HTTP_409_CONFLICT:
        return "请求与当前数据状态冲突。"
    return "请求处理失败。"


async def identity_error_handler(request: Request, exc: IdentityError):
    """领域异常按预定义状态码与错误码返回。"""
    details = {"status_code": exc.status_code, "reason": exc.code.lower()}
    details.update(exc.details)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(
            request,
            code=exc.code,
            message=exc.message,
            details=details,
            field=exc.field,
            errors=exc.errors,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """将协议异常统一包装为标准错误结构。"""
    message = exc.detail if isinstance(exc.detail, str) else _default_http_message(exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(
            request,
            code=_default_http_error_code(exc.status_code),
            message=message,
            details={"status_code": exc.status_code},
        ),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """请求体校验失败，按字段返回错误信息。"""
    errors: dict[str, str] = {}
    for err in exc.errors():
        field = ".".join(str(item) for item in err.get("loc", []) if item != "body") or "body"
        errors.setdefault(field, str(err.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_payload(
            request,
            code="VALIDATION_ERROR",
            message="输入验证失败",
            details={"status_code": status.HTTP_400_BAD_REQUEST, "reason": "validation_error"},
            errors=errors,
        ),
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常：完整信息写日志，生产模式下不向客户端暴露内部细节。"""
    logger.exception("unhandled error method=%s path=%s", request.method, request.url.path)
    details: dict[str, object] = {
        "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
        "reason": "unexpected_exception",
    }
    if not get_settings().is_production:
        details["debug"] = f"{type(exc).__name__}: {exc}"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(request, code="INTERNAL_ERROR", message=DEFAULT_ERROR_MESSAGE, details=details),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(IdentityError)(identity_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
