"""
FastAPI 应用入口

初始化 Sentry、统一错误响应、CORS 和 API 路由。

运行方式：
    uvicorn storefront.main:app --reload
"""
from typing import Any

import sentry_sdk
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from storefront.api.errors import AppError
from storefront.api.main import api_router
from storefront.core.config import settings


def custom_generate_unique_id(route: APIRoute) -> str:
    """生成 OpenAPI operation id：``{tag}-{route_name}``，如 ``orders-create_order``"""
    return f"{route.tags[0]}-{route.name}"


# Sentry 错误监控（仅非 local 环境）
if settings.SENTRY_DSN and settings.ENVIRONMENT != "local":  # pragma: no cover
    sentry_sdk.init(dsn=str(settings.SENTRY_DSN), enable_tracing=True)

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    generate_unique_id_function=custom_generate_unique_id,
)


@app.exception_handler(AppError)
async def app_error_handler(_: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": exc.message, "data": None},
    )


@app.exception_handler(HTTPException)
async def http_error_handler(_: Request, exc: HTTPException) -> JSONResponse:
    """
    HTTPException 也转换为统一响应格式

    ``detail`` 为 ``{"code", "message"}`` 字典时直接使用；字符串则以 ``status_code * 1000`` 作为错误码。
    """
    payload: dict[str, Any]
    if isinstance(exc.detail, dict) and {"code", "message"} <= set(exc.detail.keys()):
        payload = {"code": exc.detail.get("code"), "message": exc.detail.get("message")}
    else:
        payload = {"code": exc.status_code * 1000, "message": str(exc.detail)}
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": payload["code"], "message": payload["message"], "data": None},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    # 请求体校验失败统一返回 400
    return JSONResponse(
        status_code=400,
        content={
            "code": 400000,
            "message": "Validation error",
            "data": {"errors": jsonable_errors(exc)},
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """去掉无法序列化的 ``ctx`` / ``input`` 后的校验错误列表"""
    return [
        {key: value for key, value in error.items() if key in ("type", "loc", "msg")}
        for error in exc.errors()
    ]


# 配置 CORS 中间件
if settings.all_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.all_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# 所有路由挂在 /api 前缀下
app.include_router(api_router, prefix=settings.API_PREFIX)
