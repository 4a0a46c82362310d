import logging
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

# === 结构化日志配置 ===
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("journaldesk")


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """
    统一异常捕获中间件：请求日志 + 未捕获异常转 500
    """
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
        except HTTPException as exc:
            return error_response(exc.status_code, str(exc.detail))
        except Exception as e:
            logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, e, exc_info=True)
            return error_response(500, "Internal server error")

        process_time = time.time() - start_time
        logger.info(
            "Method: %s Path: %s Status: %s Time: %.4fs",
            request.method,
            request.url.path,
            response.status_code,
            process_time,
        )
        return response


async def _http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return error_response(exc.status_code, detail)


async def _validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    # 中文注释: 422 仍返回统一结构，字段级错误放在 details 中便于前端定位。
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": "Validation failed", "details": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    out: list[dict] = []
    for err in exc.errors():
        out.append(
            {
                "loc": [str(p) for p in err.get("loc", ())],
                "msg": str(err.get("msg") or ""),
                "type": str(err.get("type") or ""),
            }
        )
    return out


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
