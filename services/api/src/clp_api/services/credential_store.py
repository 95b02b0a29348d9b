"""账号存储。

唯一性以数据库约束为准：调用方的“是否已存在”预检查只用于给出更友好的提示，
并发注册时两个请求都可能通过预检查，最终由写库时的唯一约束裁决。
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clp_api.errors import IdentityTaken, ValidationError
from clp_api.models.enums import IdentityChannel
from clp_api.models.user import User
from clp_api.services.local_auth import hash_password

logger = logging.getLogger("clp_api.credential_store")

# 按约束名/列名识别冲突字段，顺序即优先级。
_UNIQUE_FIELDS = ("username", "email", "phone", "wechat_openid")

_CHANNEL_COLUMNS = {
    IdentityChannel.USERNAME: User.username,
    IdentityChannel.EMAIL: User.email,
    IdentityChannel.PHONE: User.phone,
    IdentityChannel.WECHAT: User.wechat_openid,
}


def normalize_email(value: str) -> str:
    """标准化邮箱字段（去空格 + 小写）。"""
    return value.strip().lower()


def check_invariants(user: User) -> None:
    """写库前校验身份通道组合。"""
    if not (user.email or user.phone or user.wechat_openid):
        raise ValidationError(
            "邮箱、手机号、微信至少需要绑定一项",
            errors={"email": "邮箱、手机号或微信账号是必需的"},
        )
    if user.password_hash:
        if not user.email:
            raise ValidationError("设置密码前需要先绑定邮箱", field="email")
        if user.wechat_openid:
            raise ValidationError("微信账号不支持设置密码", field="password")


def duplicate_field_from_error(exc: IntegrityError) -> str | None:
    """从唯一约束冲突中解析出冲突字段。"""
    message = str(exc.orig) if exc.orig is not None else str(exc)
    for field in _UNIQUE_FIELDS:
        if f"users.{field}" in message or f"uk_users_{field}" in message or f"({field})" in message:
            return field
    return None


class CredentialStore:
    """用户记录的读写入口，每次写入都校验通道不变量。"""

    def __init__(self, db: Session, *, password_hash_iterations: int | None = None) -> None:
        self.db = db
        self.password_hash_iterations = password_hash_iterations

    def get(self, user_id: UUID) -> User | None:
        return self.db.get(User, user_id)

    def find_by_identity(self, channel: IdentityChannel | str, value: str | None) -> User | None:
        """按身份通道查找账号。"""
        if not value:
            return None
        channel = IdentityChannel(channel)
        if channel == IdentityChannel.EMAIL:
            value = normalize_email(value)
        column = _CHANNEL_COLUMNS[channel]
        return self.db.execute(select(User).where(column == value)).scalar_one_or_none()

    def username_available(self, username: str, *, exclude_user_id: UUID | None = None) -> bool:
        stmt = select(User.id).where(User.username == username)
        if exclude_user_id is not None:
            stmt = stmt.where(User.id != exclude_user_id)
        return self.db.execute(stmt).first() is None

    def set_password(self, user: User, plaintext: str) -> None:
        """哈希并设置新口令，仅在口令确实变化时调用。"""
        user.password_hash = hash_password(plaintext, iterations=self.password_hash_iterations)
        user.password_updated_at = datetime.now(timezone.utc)

    def create(self, *, password: str | None = None, **fields: Any) -> User:
        """创建账号，唯一约束冲突转换为 IdentityTaken。"""
        if fields.get("email"):
            fields["email"] = normalize_email(fields["email"])
        user = User(**fields)
        if password is not None:
            self.set_password(user, password)
        check_invariants(user)
        self.db.add(user)
        self._commit()
        self.db.refresh(user)
        logger.info("user created id=%s username=%s", user.id, user.username)
        return user

    def save(self, user: User) -> User:
        """保存已有账号的变更，不会重新哈希已存储的口令。"""
        if user.email:
            user.email = normalize_email(user.email)
        try:
            check_invariants(user)
        except ValidationError:
            self.db.rollback()
            raise
        self._commit()
        self.db.refresh(user)
        return user

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            field = duplicate_field_from_error(exc)
            if field is None:
                raise
            logger.info("identity conflict on write field=%s", field)
            raise IdentityTaken(field) from exc
