"""身份解析服务。

职责:
1. 邮箱注册 / 登录，手机号验证码登录，微信登录，三个通道汇聚到同一账号记录。
2. 查找或创建账号时返回明确的 CREATED / EXISTING 结果。
3. 登录成功后签发访问令牌与刷新令牌。
4. 资料修改、口令修改与刷新令牌换取访问令牌。

第三方调用（短信下发、微信换取 OpenID）总是在写库之前完成。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import re

from sqlalchemy.orm import Session

from clp_api.core.config import Settings
from clp_api.core.security import IssuedToken, SessionClaims, TokenIssuer
from clp_api.errors import (
    DeliveryFailed,
    IdentityTaken,
    InvalidCredentials,
    InvalidVerificationCode,
    NotFound,
    TokenInvalid,
    ValidationError,
)
from clp_api.models.enums import AccountOutcome, IdentityChannel, TokenType, UserStatus
from clp_api.models.user import User
from clp_api.services.credential_store import CredentialStore, normalize_email
from clp_api.services.local_auth import verify_password
from clp_api.services.otp import SmsCodeSender, VerificationCodeStore, generate_code, is_valid_phone
from clp_api.services.wechat import ExternalIdentity, WechatIdentityVerifier

logger = logging.getLogger("clp_api.identity")

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20
PASSWORD_MIN_LENGTH = 6
EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")
CODE_PATTERN = re.compile(r"^\d{6}$")


@dataclass(frozen=True)
class ResolvedAccount:
    """查找或创建账号的结果。"""

    user: User
    outcome: AccountOutcome

    @property
    def is_new(self) -> bool:
        return self.outcome == AccountOutcome.CREATED


@dataclass(frozen=True)
class SessionBundle:
    access: IssuedToken
    refresh: IssuedToken
    account: ResolvedAccount

    @property
    def user(self) -> User:
        return self.account.user


def validate_username(username: str | None) -> str:
    username = (username or "").strip()
    if not username:
        raise ValidationError("用户名是必需的", field="username")
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise ValidationError("用户名长度必须在3-20个字符之间", field="username")
    return username


def validate_email(email: str | None) -> str:
    email = normalize_email(email or "")
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("请输入有效的邮箱地址", field="email")
    return email


def validate_password(password: str | None, *, field: str = "password") -> str:
    if not password or len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError("密码至少需要6个字符", field=field)
    return password


def validate_phone(phone: str | None) -> str:
    phone = (phone or "").strip()
    if not is_valid_phone(phone):
        raise ValidationError("请输入有效的手机号", field="phone")
    return phone


def username_candidate(base: str, attempt: int) -> str:
    """第 0 次尝试使用原名，之后依次追加 _1、_2 ...，总长度不超过上限。"""
    if attempt == 0:
        return base[:USERNAME_MAX_LENGTH]
    suffix = f"_{attempt}"
    return f"{base[: USERNAME_MAX_LENGTH - len(suffix)]}{suffix}"


class IdentityService:
    """登录通道编排入口，每个请求构造一个实例。"""

    def __init__(
        self,
        db: Session,
        *,
        settings: Settings,
        token_issuer: TokenIssuer,
        code_store: VerificationCodeStore,
        code_sender: SmsCodeSender,
        identity_verifier: WechatIdentityVerifier,
    ) -> None:
        self.db = db
        self.settings = settings
        self.store = CredentialStore(db, password_hash_iterations=settings.auth_password_hash_iterations)
        self.token_issuer = token_issuer
        self.code_store = code_store
        self.code_sender = code_sender
        self.identity_verifier = identity_verifier

    # ---- 邮箱通道 ----

    def register_email(self, *, username: str, email: str, password: str, school: str | None = None) -> User:
        """邮箱注册，只创建账号不签发令牌。"""
        missing = {
            field: message
            for field, value, message in (
                ("username", username, "用户名是必需的"),
                ("email", email, "邮箱是必需的"),
                ("password", password, "密码是必需的"),
            )
            if not value
        }
        if missing:
            raise ValidationError("请提供用户名、邮箱和密码", errors=missing)

        username = validate_username(username)
        email = validate_email(email)
        password = validate_password(password)

        # 预检查只为给出友好提示，最终以写库唯一约束为准。
        if self.store.find_by_identity(IdentityChannel.USERNAME, username):
            raise IdentityTaken("username")
        if self.store.find_by_identity(IdentityChannel.EMAIL, email):
            raise IdentityTaken("email")

        return self.store.create(
            username=username,
            email=email,
            password=password,
            school=(school or "").strip(),
        )

    def login_email(self, *, email: str, password: str) -> SessionBundle:
        """邮箱密码登录。账号不存在与密码错误返回同一错误。"""
        user = self.store.find_by_identity(IdentityChannel.EMAIL, email or "")
        if user is None or user.status != UserStatus.ACTIVE:
            raise InvalidCredentials()
        if not verify_password(password or "", user.password_hash):
            raise InvalidCredentials()
        return self._start_session(ResolvedAccount(user, AccountOutcome.EXISTING), identity_hint=user.email)

    # ---- 手机号通道 ----

    def send_phone_code(self, phone: str) -> str:
        """下发验证码，与手机号是否已注册无关。发送失败时不写入任何数据。"""
        phone = validate_phone(phone)
        code = generate_code()
        if not self.code_sender.dispatch(phone, code):
            raise DeliveryFailed()
        self.code_store.issue(phone, code)
        return code

    def login_phone(self, *, phone: str, code: str, username: str | None = None) -> SessionBundle:
        """手机号验证码登录；新手机号需同时提供用户名并自动注册。"""
        phone = validate_phone(phone)
        code = (code or "").strip()
        if not CODE_PATTERN.match(code):
            raise ValidationError("请输入6位数字验证码", field="code")
        if not self.code_store.check(phone, code):
            raise InvalidVerificationCode()

        user = self.store.find_by_identity(IdentityChannel.PHONE, phone)
        if user is not None:
            self._consume_code(phone, code)
            return self._start_session(ResolvedAccount(user, AccountOutcome.EXISTING), identity_hint=phone)

        if not username:
            raise ValidationError("新用户需要提供用户名", field="username")
        username = validate_username(username)
        if not self.store.username_available(username):
            raise IdentityTaken("username")

        self._consume_code(phone, code)
        account = self._create_or_resolve(
            IdentityChannel.PHONE,
            phone,
            username=username,
            phone=phone,
        )
        return self._start_session(account, identity_hint=phone)

    def _consume_code(self, phone: str, code: str) -> None:
        if not self.code_store.consume(phone, code):
            raise InvalidVerificationCode()

    # ---- 微信通道 ----

    def login_wechat(self, *, code: str, nickname: str | None = None, avatar: str | None = None) -> SessionBundle:
        """微信登录；首次登录自动创建无密码账号。"""
        identity = self.identity_verifier.exchange(code)
        nickname = (nickname or "").strip() or None
        avatar = (avatar or "").strip() or None

        user = self.store.find_by_identity(IdentityChannel.WECHAT, identity.external_id)
        if user is not None:
            self._refresh_wechat_profile(user, identity, nickname=nickname, avatar=avatar)
            account = ResolvedAccount(user, AccountOutcome.EXISTING)
        else:
            account = self._create_wechat_user(identity, nickname=nickname, avatar=avatar)
        return self._start_session(account, identity_hint=f"wechat:{identity.external_id[:8]}")

    def _refresh_wechat_profile(
        self,
        user: User,
        identity: ExternalIdentity,
        *,
        nickname: str | None,
        avatar: str | None,
    ) -> None:
        if nickname:
            user.nickname = nickname
        if avatar:
            user.avatar = avatar
        if identity.union_id and not user.wechat_unionid:
            user.wechat_unionid = identity.union_id
        self.store.save(user)

    def _create_wechat_user(
        self,
        identity: ExternalIdentity,
        *,
        nickname: str | None,
        avatar: str | None,
    ) -> ResolvedAccount:
        base = nickname if nickname and len(nickname) >= USERNAME_MIN_LENGTH else f"wx_{identity.external_id[-8:]}"
        for attempt in range(self.settings.oauth_username_max_attempts):
            candidate = username_candidate(base, attempt)
            if not self.store.username_available(candidate):
                continue
            try:
                return self._create_or_resolve(
                    IdentityChannel.WECHAT,
                    identity.external_id,
                    username=candidate,
                    wechat_openid=identity.external_id,
                    wechat_unionid=identity.union_id,
                    nickname=nickname,
                    avatar=avatar or "",
                )
            except IdentityTaken as exc:
                # 用户名在预检查后被并发占用，换下一个候选名。
                if exc.field != "username":
                    raise
        raise RuntimeError(f"unable to allocate username for base {base!r}")

    # ---- 通用 ----

    def _create_or_resolve(self, channel: IdentityChannel, value: str, **fields) -> ResolvedAccount:
        """创建账号；若同一身份被并发请求抢先创建，则按已有账号处理。"""
        channel_field = "wechat_openid" if channel == IdentityChannel.WECHAT else str(channel)
        try:
            user = self.store.create(**fields)
        except IdentityTaken as exc:
            if exc.field != channel_field:
                raise
            existing = self.store.find_by_identity(channel, value)
            if existing is None:
                raise
            logger.info("concurrent registration resolved to existing user id=%s", existing.id)
            return ResolvedAccount(existing, AccountOutcome.EXISTING)
        return ResolvedAccount(user, AccountOutcome.CREATED)

    def _start_session(self, account: ResolvedAccount, *, identity_hint: str | None = None) -> SessionBundle:
        user = account.user
        if user.status != UserStatus.ACTIVE:
            raise InvalidCredentials("账号已被禁用")
        user.last_login_at = datetime.now(timezone.utc)
        self.store.save(user)

        hint = identity_hint or user.identity_hint
        access = self.token_issuer.issue(
            SessionClaims(user_id=user.id, username=user.username, identity_hint=hint, token_type=TokenType.ACCESS),
            self.settings.auth_access_token_ttl_seconds,
        )
        refresh = self.token_issuer.issue(
            SessionClaims(user_id=user.id, username=user.username, identity_hint=hint, token_type=TokenType.REFRESH),
            self.settings.auth_refresh_token_ttl_seconds,
        )
        logger.info("session issued user_id=%s outcome=%s", user.id, account.outcome)
        return SessionBundle(access=access, refresh=refresh, account=account)

    def refresh(self, refresh_token: str) -> IssuedToken:
        """用刷新令牌换取新的访问令牌。刷新令牌本身不轮换，也不记录使用状态。"""
        claims = self.token_issuer.verify((refresh_token or "").strip())
        if claims.token_type != TokenType.REFRESH:
            raise TokenInvalid("请使用刷新令牌")
        user = self.store.get(claims.user_id)
        if user is None:
            raise NotFound()
        if user.status != UserStatus.ACTIVE:
            raise TokenInvalid("账号已被禁用")
        return self.token_issuer.issue(
            SessionClaims(
                user_id=user.id,
                username=user.username,
                identity_hint=claims.identity_hint or user.identity_hint,
                token_type=TokenType.ACCESS,
            ),
            self.settings.auth_access_token_ttl_seconds,
        )

    def resolve_session(self, access_token: str) -> User:
        """校验访问令牌并返回当前用户。"""
        claims = self.token_issuer.verify(access_token)
        if claims.token_type != TokenType.ACCESS:
            raise TokenInvalid()
        user = self.store.get(claims.user_id)
        if user is None or user.status != UserStatus.ACTIVE:
            raise TokenInvalid("用户不存在或已被删除")
        return user

    # ---- 资料与口令 ----

    def update_profile(
        self,
        user: User,
        *,
        username: str | None = None,
        school: str | None = None,
        avatar: str | None = None,
        nickname: str | None = None,
        email: str | None = None,
    ) -> User:
        if username is not None and username != user.username:
            username = validate_username(username)
            if not self.store.username_available(username, exclude_user_id=user.id):
                raise IdentityTaken("username")
            user.username = username
        if email is not None:
            email = validate_email(email)
            if email != user.email:
                existing = self.store.find_by_identity(IdentityChannel.EMAIL, email)
                if existing is not None and existing.id != user.id:
                    raise IdentityTaken("email")
                user.email = email
                user.email_verified = False
                user.email_verification_token_hash = None
                user.email_verification_expires_at = None
        if school is not None:
            user.school = school.strip()
        if avatar is not None:
            user.avatar = avatar.strip()
        if nickname is not None:
            user.nickname = nickname.strip() or None
        return self.store.save(user)

    def change_password(self, user: User, *, current_password: str | None, new_password: str) -> User:
        """修改口令；已有口令时必须先校验当前口令。"""
        new_password = validate_password(new_password, field="new_password")
        if user.password_hash:
            if not verify_password(current_password or "", user.password_hash):
                raise InvalidCredentials("当前密码错误")
        elif user.wechat_openid:
            raise ValidationError("微信账号不支持设置密码", field="new_password")
        elif not user.email:
            raise ValidationError("设置密码前需要先绑定邮箱", field="email")

        self.store.set_password(user, new_password)
        user.password_reset_token_hash = None
        user.password_reset_expires_at = None
        self.store.save(user)
        logger.info("password changed user_id=%s", user.id)
        return user
