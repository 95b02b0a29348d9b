"""认证接口。"""

import logging

from fastapi import APIRouter, Depends, Request, status

from clp_api.core.config import Settings
from clp_api.dependencies import (
    get_app_settings,
    get_current_user,
    get_identity_service,
    get_school_workflow,
    get_secret_token_manager,
)
from clp_api.errors import ValidationError
from clp_api.models.user import User
from clp_api.schemas.auth import (
    AuthLoginRequest,
    AuthRegisterRequest,
    ChangePasswordRequest,
    EmailVerifyRequest,
    ForgotPasswordRequest,
    PhoneLoginRequest,
    PhoneSendCodeRequest,
    ProfileUpdateRequest,
    RefreshTokenRequest,
    ResetPasswordRequest,
    SchoolVerifyRequest,
    WechatLoginRequest,
)
from clp_api.schemas.common import ErrorResponse, SuccessResponse
from clp_api.schemas.responses import (
    AccessTokenData,
    AuthSessionData,
    EmailVerificationData,
    EmptyData,
    ForgotPasswordData,
    PhoneCodeData,
    SchoolVerificationData,
    UserData,
    user_view,
)
from clp_api.services.identity import IdentityService, SessionBundle, validate_password
from clp_api.services.reset_tokens import SecretTokenManager
from clp_api.services.school_verification import SchoolVerificationWorkflow, verification_view
from clp_api.utils.response import success

logger = logging.getLogger("clp_api.api.auth")

router = APIRouter(prefix="/auth", tags=["auth"])

FORGOT_PASSWORD_MESSAGE = "如果该邮箱已注册，您将收到密码重置邮件"


def _session_payload(bundle: SessionBundle) -> dict:
    return {
        "access_token": bundle.access.token,
        "refresh_token": bundle.refresh.token,
        "token_type": "bearer",
        "expires_at": bundle.access.expires_at,
        "expires_in": bundle.access.expires_in,
        "is_new_user": bundle.account.is_new,
        "user": user_view(bundle.user),
    }


@router.post(
    "/register",
    summary="邮箱注册",
    description="使用用户名、邮箱、密码注册账号，返回用户信息（不含密码）。",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse[UserData],
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def register(
    payload: AuthRegisterRequest,
    request: Request,
    service: IdentityService = Depends(get_identity_service),
):
    """邮箱注册。"""
    user = service.register_email(
        username=payload.username,
        email=payload.email,
        password=payload.password,
        school=payload.school,
    )
    return success(request, {"user": user_view(user)}, message="注册成功")


@router.post(
    "/login",
    summary="邮箱密码登录",
    description="账号不存在与密码错误返回相同错误。",
    response_model=SuccessResponse[AuthSessionData],
    responses={401: {"model": ErrorResponse}},
)
def login(
    payload: AuthLoginRequest,
    request: Request,
    service: IdentityService = Depends(get_identity_service),
):
    bundle = service.login_email(email=payload.email, password=payload.password)
    return success(request, _session_payload(bundle), message="登录成功")


@router.post(
    "/forgot-password",
    summary="请求密码重置",
    description="无论邮箱是否注册都返回相同结果；非生产环境在响应中附带重置令牌。",
    response_model=SuccessResponse[ForgotPasswordData],
    responses={400: {"model": ErrorResponse}},
)
def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    manager: SecretTokenManager = Depends(get_secret_token_manager),
    settings: Settings = Depends(get_app_settings),
):
    if not payload.email.strip():
        raise ValidationError("请提供邮箱", field="email")
    token = manager.request_password_reset(payload.email)
    data: dict = {}
    if token and not settings.is_production:
        data["reset_token"] = token
    # TODO: 接入邮件服务后改为发送重置链接邮件。
    return success(request, data, message=FORGOT_PASSWORD_MESSAGE)


@router.post(
    "/reset-password",
    summary="重置密码",
    description="使用一次性重置令牌设置新密码，令牌使用后立即失效。",
    response_model=SuccessResponse[EmptyData],
    responses={400: {"model": ErrorResponse}},
)
def reset_password(
    payload: ResetPasswordRequest,
    request: Request,
    manager: SecretTokenManager = Depends(get_secret_token_manager),
):
    new_password = validate_password(payload.new_password, field="new_password")
    manager.consume_reset_token(payload.token, new_password)
    return success(request, {}, message="密码重置成功，请使用新密码登录")


@router.post(
    "/refresh-token",
    summary="刷新访问令牌",
    description="使用刷新令牌换取新的访问令牌，刷新令牌本身保持不变。",
    response_model=SuccessResponse[AccessTokenData],
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def refresh_token(
    payload: RefreshTokenRequest,
    request: Request,
    service: IdentityService = Depends(get_identity_service),
):
    issued = service.refresh(payload.refresh_token)
    return success(
        request,
        {
            "access_token": issued.token,
            "token_type": "bearer",
            "expires_at": issued.expires_at,
            "expires_in": issued.expires_in,
        },
        message="Token 刷新成功",
    )


@router.put(
    "/profile",
    summary="更新个人资料",
    response_model=SuccessResponse[UserData],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def update_profile(
    payload: ProfileUpdateRequest,
    request: Request,
    user: User = Depends(get_current_user),
    service: IdentityService = Depends(get_identity_service),
):
    updated = service.update_profile(
        user,
        username=payload.username,
        school=payload.school,
        avatar=payload.avatar,
        nickname=payload.nickname,
        email=payload.email,
    )
    return success(request, {"user": user_view(updated)}, message="用户信息更新成功")


@router.put(
    "/change-password",
    summary="修改密码",
    description="已设置密码的账号需要提供当前密码。",
    response_model=SuccessResponse[EmptyData],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    user: User = Depends(get_current_user),
    service: IdentityService = Depends(get_identity_service),
):
    service.change_password(user, current_password=payload.current_password, new_password=payload.new_password)
    return success(request, {}, message="密码修改成功")


@router.get(
    "/me",
    summary="获取当前用户",
    response_model=SuccessResponse[UserData],
    responses={401: {"model": ErrorResponse}},
)
def me(request: Request, user: User = Depends(get_current_user)):
    return success(request, {"user": user_view(user)}, message="获取用户信息成功")


@router.post(
    "/email/verification",
    summary="发送邮箱验证",
    description="为当前账号的邮箱签发验证令牌；非生产环境在响应中附带令牌。",
    response_model=SuccessResponse[EmailVerificationData],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
def request_email_verification(
    request: Request,
    user: User = Depends(get_current_user),
    manager: SecretTokenManager = Depends(get_secret_token_manager),
    settings: Settings = Depends(get_app_settings),
):
    if not user.email:
        raise ValidationError("请先绑定邮箱", field="email")
    if user.email_verified:
        return success(request, {}, message="邮箱已验证")
    token = manager.issue_email_verification_token(user)
    data = {} if settings.is_production else {"verification_token": token}
    return success(request, data, message="验证邮件已发送")


@router.post(
    "/email/verify",
    summary="验证邮箱",
    response_model=SuccessResponse[EmptyData],
    responses={400: {"model": ErrorResponse}},
)
def verify_email(
    payload: EmailVerifyRequest,
    request: Request,
    manager: SecretTokenManager = Depends(get_secret_token_manager),
):
    manager.consume_email_verification_token(payload.token)
    return success(request, {}, message="邮箱验证成功")


@router.post(
    "/phone/send-code",
    summary="发送手机验证码",
    description="无论手机号是否注册都会发送；非生产环境在响应中附带验证码。",
    tags=["auth-phone"],
    response_model=SuccessResponse[PhoneCodeData],
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
def send_phone_code(
    payload: PhoneSendCodeRequest,
    request: Request,
    service: IdentityService = Depends(get_identity_service),
    settings: Settings = Depends(get_app_settings),
):
    code = service.send_phone_code(payload.phone)
    data: dict = {"expires_in": settings.otp_code_ttl_seconds}
    if not settings.is_production:
        data["code"] = code
    return success(request, data, message="验证码已发送")


@router.post(
    "/phone/login",
    summary="手机号验证码登录",
    description="手机号未注册时需提供用户名，将自动创建账号。",
    tags=["auth-phone"],
    response_model=SuccessResponse[AuthSessionData],
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def phone_login(
    payload: PhoneLoginRequest,
    request: Request,
    service: IdentityService = Depends(get_identity_service),
):
    bundle = service.login_phone(phone=payload.phone, code=payload.code, username=payload.username)
    message = "注册成功" if bundle.account.is_new else "登录成功"
    return success(request, _session_payload(bundle), message=message)


@router.post(
    "/wechat/login",
    summary="微信登录",
    description="使用小程序登录 code 换取身份，首次登录自动创建账号。",
    tags=["auth-wechat"],
    response_model=SuccessResponse[AuthSessionData],
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
def wechat_login(
    payload: WechatLoginRequest,
    request: Request,
    service: IdentityService = Depends(get_identity_service),
):
    bundle = service.login_wechat(code=payload.code, nickname=payload.nickname, avatar=payload.avatar)
    message = "注册成功" if bundle.account.is_new else "登录成功"
    return success(request, _session_payload(bundle), message=message)


@router.post(
    "/school/verify",
    summary="提交学校认证",
    description="需先在资料中填写学校；审核中或已通过时不可重复提交。",
    tags=["auth-school"],
    response_model=SuccessResponse[SchoolVerificationData],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def submit_school_verification(
    payload: SchoolVerifyRequest,
    request: Request,
    user: User = Depends(get_current_user),
    workflow: SchoolVerificationWorkflow = Depends(get_school_workflow),
):
    updated = workflow.submit(
        user,
        student_id=payload.student_id,
        method=payload.verification_method,
        proof=payload.proof,
    )
    return success(request, verification_view(updated), message="学校认证已提交，请等待审核")


@router.get(
    "/school/verify",
    summary="查询学校认证状态",
    tags=["auth-school"],
    response_model=SuccessResponse[SchoolVerificationData],
    responses={401: {"model": ErrorResponse}},
)
def get_school_verification(request: Request, user: User = Depends(get_current_user)):
    return success(request, verification_view(user), message="获取认证状态成功")
