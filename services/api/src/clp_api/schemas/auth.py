"""认证相关请求结构。

形状校验（用户名长度、邮箱格式、口令长度、手机号格式）由服务层统一完成，
这里只约束必填与长度上限，保证错误信息与服务层一致。
"""

from pydantic import AliasChoices, Field

from clp_api.schemas.common import RequestSchema


class AuthRegisterRequest(RequestSchema):
    """邮箱注册请求。"""

    username: str = Field(max_length=64, description="用户名，3-20 个字符。", examples=["alice123"])
    email: str = Field(max_length=256, description="登录邮箱。", examples=["alice@example.com"])
    password: str = Field(max_length=128, description="登录密码，至少 6 位。", examples=["secret1"])
    school: str | None = Field(default=None, max_length=128, description="学校名称。")


class AuthLoginRequest(RequestSchema):
    """邮箱密码登录请求。"""

    email: str = Field(max_length=256, description="登录邮箱。")
    password: str = Field(max_length=128, description="登录密码。")


class ForgotPasswordRequest(RequestSchema):
    email: str = Field(max_length=256, description="注册邮箱。")


class ResetPasswordRequest(RequestSchema):
    token: str = Field(max_length=256, description="重置令牌明文。")
    new_password: str = Field(
        max_length=128,
        validation_alias=AliasChoices("new_password", "newPassword"),
        description="新密码，至少 6 位。",
    )


class RefreshTokenRequest(RequestSchema):
    refresh_token: str = Field(
        max_length=4096,
        validation_alias=AliasChoices("refresh_token", "refreshToken"),
        description="刷新令牌。",
    )


class ProfileUpdateRequest(RequestSchema):
    """资料更新请求，未提供的字段保持不变。"""

    username: str | None = Field(default=None, max_length=64, description="新用户名。")
    school: str | None = Field(default=None, max_length=128, description="学校名称。")
    avatar: str | None = Field(default=None, max_length=512, description="头像地址。")
    nickname: str | None = Field(default=None, max_length=64, description="昵称。")
    email: str | None = Field(default=None, max_length=256, description="绑定或更换邮箱。")


class ChangePasswordRequest(RequestSchema):
    current_password: str | None = Field(
        default=None,
        max_length=128,
        validation_alias=AliasChoices("current_password", "currentPassword"),
        description="当前密码；账号尚未设置密码时可省略。",
    )
    new_password: str = Field(
        max_length=128,
        validation_alias=AliasChoices("new_password", "newPassword"),
        description="新密码，至少 6 位。",
    )


class PhoneSendCodeRequest(RequestSchema):
    phone: str = Field(max_length=32, description="手机号。", examples=["13800000000"])


class PhoneLoginRequest(RequestSchema):
    """手机号验证码登录；新手机号需提供用户名。"""

    phone: str = Field(max_length=32, description="手机号。")
    code: str = Field(max_length=16, description="6 位验证码。")
    username: str | None = Field(default=None, max_length=64, description="新用户的用户名。")


class WechatLoginRequest(RequestSchema):
    code: str = Field(max_length=256, description="小程序 wx.login 返回的 code。")
    nickname: str | None = Field(default=None, max_length=64, description="微信昵称。")
    avatar: str | None = Field(default=None, max_length=512, description="微信头像地址。")


class SchoolVerifyRequest(RequestSchema):
    student_id: str = Field(
        max_length=64,
        validation_alias=AliasChoices("student_id", "studentId"),
        description="学号。",
    )
    verification_method: str = Field(
        max_length=32,
        validation_alias=AliasChoices("verification_method", "verificationMethod"),
        description="认证方式：student_card / school_email / manual。",
    )
    proof: str | None = Field(default=None, max_length=512, description="证明材料地址。")


class EmailVerifyRequest(RequestSchema):
    token: str = Field(max_length=256, description="邮箱验证令牌明文。")
