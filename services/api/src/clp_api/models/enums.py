"""领域枚举定义。"""

from enum import StrEnum


class UserStatus(StrEnum):
    """用户状态。"""

    ACTIVE = "active"  # 正常可登录。
    DISABLED = "disabled"  # 已禁用，所有登录通道均拒绝。


class IdentityChannel(StrEnum):
    """可用于查找账号的身份字段。"""

    USERNAME = "username"
    EMAIL = "email"
    PHONE = "phone"
    WECHAT = "wechat"


class TokenType(StrEnum):
    """会话令牌类型。"""

    ACCESS = "access"
    REFRESH = "refresh"


class SchoolVerificationStatus(StrEnum):
    """学校认证状态，未提交时为空。"""

    PENDING = "pending"  # 已提交，等待人工审核。
    APPROVED = "approved"  # 审核通过。
    REJECTED = "rejected"  # 审核驳回，可重新提交。


class SchoolVerificationMethod(StrEnum):
    """学校认证方式。"""

    STUDENT_CARD = "student_card"  # 学生证照片。
    SCHOOL_EMAIL = "school_email"  # 学校邮箱。
    MANUAL = "manual"  # 人工核验。


class AccountOutcome(StrEnum):
    """查找或创建账号的结果。"""

    CREATED = "created"
    EXISTING = "existing"
