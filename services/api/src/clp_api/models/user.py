"""账号与身份模型。"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from clp_api.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from clp_api.models.enums import UserStatus


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """用户实体，邮箱、手机号、微信三个登录通道汇聚到同一条记录。

    可空唯一列只约束非空值（稀疏唯一），多个用户可同时没有手机号或邮箱。
    """

    __tablename__ = "users"

    # 登录名，区分大小写，全局唯一。
    username: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    # 邮箱通道，写入前统一小写。
    email: Mapped[str | None] = mapped_column(String(256), unique=True)
    # 手机号通道。
    phone: Mapped[str | None] = mapped_column(String(32), unique=True)
    # 微信 OpenID（第三方主体标识）。
    wechat_openid: Mapped[str | None] = mapped_column(String(128), unique=True)
    # 微信 UnionID，跨应用关联同一微信账号，不做唯一约束。
    wechat_unionid: Mapped[str | None] = mapped_column(String(128), index=True)

    # 口令哈希，仅邮箱账号且未绑定微信时存在，任何读接口均不返回。
    password_hash: Mapped[str | None] = mapped_column(String(256))
    password_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    nickname: Mapped[str | None] = mapped_column(String(64))
    avatar: Mapped[str] = mapped_column(String(512), nullable=False, default="")
    school: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=UserStatus.ACTIVE)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    email_verification_token_hash: Mapped[str | None] = mapped_column(String(64), index=True)
    email_verification_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # 同一时刻最多一条有效的密码重置请求。
    password_reset_token_hash: Mapped[str | None] = mapped_column(String(64), index=True)
    password_reset_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # 学校认证，状态为空表示尚未提交。
    school_student_id: Mapped[str | None] = mapped_column(String(64))
    school_verification_method: Mapped[str | None] = mapped_column(String(32))
    school_verification_status: Mapped[str | None] = mapped_column(String(32))
    school_verification_proof: Mapped[str | None] = mapped_column(String(512))
    school_verification_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    school_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    school_verified_by: Mapped[str | None] = mapped_column(String(64))

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    @property
    def identity_hint(self) -> str:
        """返回用于会话声明的展示身份，优先邮箱，其次手机号。"""
        if self.email:
            return self.email
        if self.phone:
            return self.phone
        if self.wechat_openid:
            return f"wechat:{self.wechat_openid[:8]}"
        return self.username
