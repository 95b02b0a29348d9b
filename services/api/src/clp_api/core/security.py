"""会话令牌签发与校验。

令牌为无状态 JWT，不维护吊销列表：刷新令牌在有效期内可重复换取访问令牌，
登出也不会使其失效。
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import re
from uuid import UUID

import jwt
from jwt import ExpiredSignatureError, InvalidTokenError

from clp_api.core.config import Settings
from clp_api.errors import TokenExpired, TokenInvalid
from clp_api.models.enums import TokenType

_REQUIRED_CLAIMS = ["sub", "exp", "iat", "iss", "aud"]


@dataclass(frozen=True)
class SessionClaims:
    """会话令牌携带的最小声明集，只标识主体，不附带任何权限。"""

    user_id: UUID
    username: str
    identity_hint: str
    token_type: TokenType = TokenType.ACCESS


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        return max(0, int((self.expires_at - datetime.now(timezone.utc)).total_seconds()))


class TokenIssuer:
    """按显式配置签发与校验会话令牌。"""

    def __init__(
        self,
        *,
        secret: str,
        algorithm: str = "HS256",
        issuer: str,
        audience: str,
        leeway_seconds: int = 0,
    ) -> None:
        self.secret = secret
        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.leeway_seconds = leeway_seconds

    def issue(self, claims: SessionClaims, ttl_seconds: int) -> IssuedToken:
        """签发包含声明、签发方、受众与过期时间的令牌。"""
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=ttl_seconds)
        payload = {
            "sub": str(claims.user_id),
            "username": claims.username,
            "identity": claims.identity_hint,
            "token_type": str(claims.token_type),
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self.secret, algorithm=self.algorithm)
        return IssuedToken(token=token, expires_at=expires_at.replace(microsecond=0))

    def verify(self, token: str) -> SessionClaims:
        """校验签名、签发方、受众与过期时间。

        失败只分为两类：过期（客户端可刷新）与无效（需重新登录）。
        """
        try:
            payload = jwt.decode(
                token,
                key=self.secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
                leeway=self.leeway_seconds,
                options={"require": _REQUIRED_CLAIMS},
            )
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except InvalidTokenError as exc:
            raise TokenInvalid() from exc

        try:
            return SessionClaims(
                user_id=UUID(str(payload["sub"])),
                username=str(payload.get("username") or ""),
                identity_hint=str(payload.get("identity") or ""),
                token_type=TokenType(payload.get("token_type", TokenType.ACCESS)),
            )
        except ValueError as exc:
            raise TokenInvalid() from exc


def build_token_issuer(settings: Settings) -> TokenIssuer:
    """根据配置构造令牌签发器。"""
    return TokenIssuer(
        secret=settings.auth_jwt_secret,
        algorithm=settings.auth_jwt_algorithm,
        issuer=settings.auth_jwt_issuer,
        audience=settings.auth_jwt_audience,
        leeway_seconds=settings.auth_jwt_leeway_seconds,
    )


def extract_bearer_token(authorization: str | None) -> str:
    """从 Authorization 头中提取 Bearer token，兼容重复头被逗号拼接的场景。"""
    if not authorization:
        raise TokenInvalid("未提供认证 token，请先登录")
    tokens = re.findall(r"Bearer\s+([^,\s]+)", authorization, flags=re.IGNORECASE)
    if not tokens:
        raise TokenInvalid("Token 格式错误")
    return tokens[-1].strip()
