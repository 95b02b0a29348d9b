"""全局通用结构。

用于定义统一响应包裹结构，便于在线接口文档展示与联调。
"""

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class BaseSchema(BaseModel):
    """基础结构，开启对象映射能力。"""

    model_config = ConfigDict(from_attributes=True)


class RequestSchema(BaseModel):
    """请求体基础结构，同时接受 snake_case 字段名与移动端的 camelCase 别名。

    字符串原样传入服务层，口令不做任何裁剪；用户名、邮箱等字段由服务层校验时去空格。
    """

    model_config = ConfigDict(populate_by_name=True)


class ErrorPayload(BaseSchema):
    """错误主体。"""

    code: str = Field(description="机器可识别错误码。")
    message: str = Field(description="人类可读错误信息。")
    details: dict[str, Any] = Field(default_factory=dict, description="可选扩展错误细节。")


class ErrorResponse(BaseSchema):
    """统一错误响应。"""

    success: bool = Field(default=False, description="固定为 false。")
    request_id: str | None = Field(default=None, description="服务端生成的请求追踪 ID。")
    message: str = Field(description="人类可读错误信息。")
    field: str | None = Field(default=None, description="冲突或出错的单个字段。")
    errors: dict[str, str] | None = Field(default=None, description="字段级校验错误。")
    error: ErrorPayload = Field(description="错误主体。")


T = TypeVar("T")


class SuccessResponse(BaseSchema, Generic[T]):
    """统一成功响应。"""

    success: bool = Field(default=True, description="固定为 true。")
    request_id: str | None = Field(default=None, description="服务端生成的请求追踪 ID。")
    message: str = Field(description="人类可读结果说明。")
    data: T = Field(description="业务返回数据主体。")
    meta: dict[str, Any] = Field(default_factory=dict, description="可选扩展元信息。")
