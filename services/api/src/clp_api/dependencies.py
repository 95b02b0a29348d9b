"""请求依赖。

职责:
1. 根据配置构造令牌签发器、验证码缓存、短信下发与微信校验等协作者。
2. 组装每个请求独立的 IdentityService。
3. 解析 Bearer 访问令牌并映射为当前用户。

测试通过 `app.dependency_overrides` 替换协作者，无需修改全局状态。
"""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from clp_api.core.config import Settings, get_settings
from clp_api.core.security import TokenIssuer, build_token_issuer, extract_bearer_token
from clp_api.db.session import get_db
from clp_api.models.user import User
from clp_api.services.identity import IdentityService
from clp_api.services.otp import SmsCodeSender, VerificationCodeStore, build_code_sender, build_code_store
from clp_api.services.reset_tokens import SecretTokenManager
from clp_api.services.school_verification import SchoolVerificationWorkflow
from clp_api.services.wechat import WechatIdentityVerifier, build_identity_verifier

bearer_scheme = HTTPBearer(auto_error=False)


def get_app_settings() -> Settings:
    return get_settings()


def get_token_issuer(settings: Settings = Depends(get_app_settings)) -> TokenIssuer:
    return build_token_issuer(settings)


def get_code_store(settings: Settings = Depends(get_app_settings)) -> VerificationCodeStore:
    return build_code_store(settings)


def get_code_sender(settings: Settings = Depends(get_app_settings)) -> SmsCodeSender:
    return build_code_sender(settings)


def get_identity_verifier(settings: Settings = Depends(get_app_settings)) -> WechatIdentityVerifier:
    return build_identity_verifier(settings)


def get_identity_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    token_issuer: TokenIssuer = Depends(get_token_issuer),
    code_store: VerificationCodeStore = Depends(get_code_store),
    code_sender: SmsCodeSender = Depends(get_code_sender),
    identity_verifier: WechatIdentityVerifier = Depends(get_identity_verifier),
) -> IdentityService:
    """组装当前请求使用的身份服务。"""
    return IdentityService(
        db,
        settings=settings,
        token_issuer=token_issuer,
        code_store=code_store,
        code_sender=code_sender,
        identity_verifier=identity_verifier,
    )


def get_secret_token_manager(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> SecretTokenManager:
    return SecretTokenManager(
        db,
        reset_ttl_seconds=settings.auth_reset_token_ttl_seconds,
        email_verification_ttl_seconds=settings.auth_email_verification_ttl_seconds,
        password_hash_iterations=settings.auth_password_hash_iterations,
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    service: IdentityService = Depends(get_identity_service),
) -> User:
    """校验访问令牌并返回当前用户。令牌过期与无效分别返回 TOKEN_EXPIRED / TOKEN_INVALID。"""
    authorization = None
    if credentials is not None and credentials.credentials:
        authorization = f"{credentials.scheme} {credentials.credentials}"
    token = extract_bearer_token(authorization)
    return service.resolve_session(token)


def get_school_workflow(service: IdentityService = Depends(get_identity_service)) -> SchoolVerificationWorkflow:
    return SchoolVerificationWorkflow(service.store)
