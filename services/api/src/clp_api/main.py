"""FastAPI 应用入口点。"""

import logging

from fastapi import FastAPI

from clp_api.api.router import api_router
from clp_api.core.config import get_settings
from clp_api.exceptions import register_exception_handlers
from clp_api.middlewares import register_middlewares

settings = get_settings()


def _setup_logging(level: str) -> None:
    """初始化日志输出格式与级别。"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app() -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    _setup_logging(settings.log_level)
    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        description=(
            "校园学习应用身份与会话接口。\n\n"
            "所有接口统一返回：`{success, request_id, message, data, meta}`。\n"
            "支持邮箱密码、手机验证码、微信三种登录方式，登录后通过 Bearer 访问令牌认证。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "auth", "description": "注册、登录、令牌刷新与密码找回。"},
            {"name": "auth-phone", "description": "手机号验证码登录。"},
            {"name": "auth-wechat", "description": "微信登录。"},
            {"name": "auth-school", "description": "学校认证。"},
        ],
    )

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
