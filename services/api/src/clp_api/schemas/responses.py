"""接口成功响应 `data` 字段结构定义。

说明：
1. 所有接口统一返回 `SuccessResponse[data=...]`。
2. 用户视图从不包含口令哈希与任何令牌摘要。
"""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from clp_api.schemas.common import BaseSchema


class HealthStatusData(BaseSchema):
    """健康检查返回结构。"""

    status: str = Field(description="健康状态值，常见为 ok 或 ready。")


class UserPublicView(BaseSchema):
    """对外用户视图。"""

    id: UUID = Field(description="用户主键 ID。")
    username: str = Field(description="用户名。")
    email: str | None = Field(default=None, description="邮箱。")
    phone: str | None = Field(default=None, description="手机号。")
    nickname: str | None = Field(default=None, description="昵称。")
    avatar: str = Field(default="", description="头像地址。")
    school: str = Field(default="", description="学校。")
    status: str = Field(description="账号状态。")
    email_verified: bool = Field(description="邮箱是否已验证。")
    has_password: bool = Field(description="是否已设置登录密码。")
    wechat_bound: bool = Field(description="是否绑定微信。")
    school_verification_status: str | None = Field(default=None, description="学校认证状态。")
    last_login_at: datetime | None = Field(default=None, description="最近一次登录时间。")
    created_at: datetime | None = Field(default=None, description="注册时间。")


class UserData(BaseSchema):
    user: UserPublicView = Field(description="用户信息。")


class AuthSessionData(BaseSchema):
    """登录结果结构。"""

    access_token: str = Field(description="访问令牌。")
    refresh_token: str = Field(description="刷新令牌。")
    token_type: str = Field(default="bearer", description="令牌类型。")
    expires_at: datetime = Field(description="访问令牌过期时间（UTC）。")
    expires_in: int = Field(description="访问令牌剩余秒数。")
    is_new_user: bool = Field(default=False, description="本次登录是否新建了账号。")
    user: UserPublicView = Field(description="用户信息。")


class AccessTokenData(BaseSchema):
    access_token: str = Field(description="新的访问令牌。")
    token_type: str = Field(default="bearer", description="令牌类型。")
    expires_at: datetime = Field(description="过期时间（UTC）。")
    expires_in: int = Field(description="剩余秒数。")


class ForgotPasswordData(BaseSchema):
    reset_token: str | None = Field(default=None, description="重置令牌明文，仅非生产环境返回。")


class PhoneCodeData(BaseSchema):
    expires_in: int = Field(description="验证码有效期（秒）。")
    code: str | None = Field(default=None, description="验证码，仅非生产环境返回。")


class EmailVerificationData(BaseSchema):
    verification_token: str | None = Field(default=None, description="验证令牌明文，仅非生产环境返回。")


class SchoolVerificationData(BaseSchema):
    school: str = Field(description="学校。")
    student_id: str | None = Field(default=None, description="学号。")
    method: str | None = Field(default=None, description="认证方式。")
    status: str | None = Field(default=None, description="认证状态，未提交时为空。")
    proof: str | None = Field(default=None, description="证明材料地址。")
    submitted_at: datetime | None = Field(default=None, description="提交时间。")
    verified_at: datetime | None = Field(default=None, description="审核时间。")
    verified_by: str | None = Field(default=None, description="审核人。")


class EmptyData(BaseSchema):
    pass


def user_view(user) -> dict:
    """转换为对外用户视图字典。"""
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "phone": user.phone,
        "nickname": user.nickname,
        "avatar": user.avatar or "",
        "school": user.school or "",
        "status": user.status,
        "email_verified": bool(user.email_verified),
        "has_password": user.has_password,
        "wechat_bound": bool(user.wechat_openid),
        "school_verification_status": user.school_verification_status,
        "last_login_at": user.last_login_at,
        "created_at": user.created_at,
    }
