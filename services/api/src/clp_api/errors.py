"""身份领域异常。

服务层只抛出这里定义的异常，由 `clp_api.exceptions` 统一转换为响应结构。
"""

from typing import Any

from fastapi import status


class IdentityError(Exception):
    """身份服务异常基类。"""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "BAD_REQUEST"
    default_message: str = "请求处理失败。"

    def __init__(
        self,
        message: str | None = None,
        *,
        field: str | None = None,
        errors: dict[str, str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.field = field
        self.errors = errors
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(IdentityError):
    """输入缺失或格式不合法，未发生任何读写。"""

    code = "VALIDATION_ERROR"
    default_message = "输入验证失败。"


class IdentityTaken(IdentityError):
    """用户名、邮箱、手机号或微信身份已被占用。"""

    status_code = status.HTTP_409_CONFLICT
    code = "IDENTITY_TAKEN"

    _FIELD_LABELS = {
        "username": "用户名",
        "email": "邮箱",
        "phone": "手机号",
        "wechat_openid": "微信账号",
    }

    def __init__(self, field: str) -> None:
        label = self._FIELD_LABELS.get(field, field)
        super().__init__(f"{label}已被使用", field=field)


class InvalidCredentials(IdentityError):
    """账号不存在与密码错误统一返回，防止账号枚举。"""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "INVALID_CREDENTIALS"
    default_message = "邮箱或密码错误"


class InvalidOrExpiredToken(IdentityError):
    """一次性令牌不存在、已过期或已使用，三种情况不做区分。"""

    code = "INVALID_OR_EXPIRED_TOKEN"
    default_message = "令牌无效或已过期"


class InvalidVerificationCode(IdentityError):
    code = "INVALID_VERIFICATION_CODE"
    default_message = "验证码错误或已过期"


class TokenExpired(IdentityError):
    """会话令牌已过期，客户端可尝试刷新。"""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "TOKEN_EXPIRED"
    default_message = "Token 已过期"


class TokenInvalid(IdentityError):
    """会话令牌缺失、被篡改或无法解析，客户端需重新登录。"""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "TOKEN_INVALID"
    default_message = "Token 无效"


class ExternalAuthError(IdentityError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "EXTERNAL_AUTH_FAILED"
    default_message = "第三方登录失败"


class DeliveryFailed(IdentityError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "DELIVERY_FAILED"
    default_message = "验证码发送失败，请稍后重试"


class NotFound(IdentityError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "用户不存在"


class VerificationConflict(IdentityError):
    """学校认证状态不允许当前操作。"""

    status_code = status.HTTP_409_CONFLICT
    code = "VERIFICATION_CONFLICT"
    default_message = "学校认证状态冲突"
