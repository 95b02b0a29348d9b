"""一次性令牌（密码重置、邮箱验证）。

令牌明文只在签发时返回一次，库中仅保存摘要与过期时间。
消费时使用带条件的单条 UPDATE 同时校验并清空令牌，保证同一令牌只能成功使用一次。
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
import logging
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from clp_api.errors import InvalidOrExpiredToken
from clp_api.models.user import User
from clp_api.services.credential_store import CredentialStore
from clp_api.services.local_auth import generate_token, hash_password, hash_token

logger = logging.getLogger("clp_api.reset_tokens")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SecretTokenManager:
    """签发与消费存放在用户记录上的一次性令牌。"""

    def __init__(
        self,
        db: Session,
        *,
        reset_ttl_seconds: int = 3600,
        email_verification_ttl_seconds: int = 7 * 24 * 3600,
        password_hash_iterations: int | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.db = db
        self.store = CredentialStore(db, password_hash_iterations=password_hash_iterations)
        self.reset_ttl_seconds = reset_ttl_seconds
        self.email_verification_ttl_seconds = email_verification_ttl_seconds
        self.password_hash_iterations = password_hash_iterations
        self.clock = clock

    def request_password_reset(self, email: str) -> str | None:
        """为邮箱对应账号签发重置令牌；账号不存在时不签发，调用方返回同样的成功响应。"""
        user = self.store.find_by_identity("email", email)
        if user is None or user.wechat_openid:
            logger.info("password reset requested for unknown or passwordless identity")
            return None
        return self.issue_reset_token(user)

    def issue_reset_token(self, user: User) -> str:
        """签发新的重置令牌，覆盖此前尚未使用的令牌。"""
        token = generate_token()
        user.password_reset_token_hash = hash_token(token)
        user.password_reset_expires_at = self.clock() + timedelta(seconds=self.reset_ttl_seconds)
        self.store.save(user)
        logger.info("password reset token issued user_id=%s", user.id)
        return token

    def _token_holder(self, column, digest: str) -> UUID:
        """按令牌摘要定位持有者，找不到时按无效令牌处理。"""
        user_id = self.db.execute(select(User.id).where(column == digest)).scalar_one_or_none()
        if user_id is None:
            raise InvalidOrExpiredToken()
        return user_id

    def _claim(self, stmt, user_id: UUID) -> User:
        """执行带令牌条件的单条更新；并发消费时只有一方命中该行。"""
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount != 1:
            self.db.rollback()
            raise InvalidOrExpiredToken()
        self.db.commit()

        user = self.store.get(user_id)
        self.db.refresh(user)
        return user

    def consume_reset_token(self, token: str, new_password: str) -> User:
        """校验重置令牌并设置新口令。

        令牌错误、过期、已被使用统一返回 InvalidOrExpiredToken。
        """
        digest = hash_token((token or "").strip())
        user_id = self._token_holder(User.password_reset_token_hash, digest)
        # 先完成耗时的口令哈希，再执行单条条件更新。
        new_hash = hash_password(new_password, iterations=self.password_hash_iterations)
        return self._complete_reset(user_id, digest, new_hash)

    def _complete_reset(self, user_id: UUID, digest: str, new_hash: str) -> User:
        now = self.clock()
        user = self._claim(
            update(User)
            .where(User.id == user_id)
            .where(User.password_reset_token_hash == digest)
            .where(User.password_reset_expires_at > now)
            .where(User.email.is_not(None))
            .where(User.wechat_openid.is_(None))
            .values(
                password_hash=new_hash,
                password_updated_at=now,
                password_reset_token_hash=None,
                password_reset_expires_at=None,
            ),
            user_id,
        )
        logger.info("password reset completed user_id=%s", user_id)
        return user

    def issue_email_verification_token(self, user: User) -> str:
        token = generate_token()
        user.email_verification_token_hash = hash_token(token)
        user.email_verification_expires_at = self.clock() + timedelta(seconds=self.email_verification_ttl_seconds)
        self.store.save(user)
        logger.info("email verification token issued user_id=%s", user.id)
        return token

    def consume_email_verification_token(self, token: str) -> User:
        digest = hash_token((token or "").strip())
        user_id = self._token_holder(User.email_verification_token_hash, digest)
        now = self.clock()
        return self._claim(
            update(User)
            .where(User.id == user_id)
            .where(User.email_verification_token_hash == digest)
            .where(User.email_verification_expires_at > now)
            .values(
                email_verified=True,
                email_verification_token_hash=None,
                email_verification_expires_at=None,
            ),
            user_id,
        )
