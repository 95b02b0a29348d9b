"""学校认证流程：none -> pending -> approved | rejected。"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any
from uuid import UUID

from clp_api.errors import ValidationError, VerificationConflict
from clp_api.models.enums import SchoolVerificationMethod, SchoolVerificationStatus
from clp_api.models.user import User
from clp_api.services.credential_store import CredentialStore

logger = logging.getLogger("clp_api.school_verification")

_BLOCKING_STATUSES = {SchoolVerificationStatus.PENDING, SchoolVerificationStatus.APPROVED}


def verification_view(user: User) -> dict[str, Any]:
    """当前认证记录，任何状态下都可由本人查询。"""
    return {
        "school": user.school or "",
        "student_id": user.school_student_id,
        "method": user.school_verification_method,
        "status": user.school_verification_status,
        "proof": user.school_verification_proof,
        "submitted_at": user.school_verification_submitted_at,
        "verified_at": user.school_verified_at,
        "verified_by": user.school_verified_by,
    }


class SchoolVerificationWorkflow:
    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    def submit(self, user: User, *, student_id: str, method: str, proof: str | None = None) -> User:
        """提交认证申请。审核中或已通过时拒绝重复提交，被驳回后可重新提交。"""
        if not (user.school or "").strip():
            raise ValidationError("请先在个人资料中填写学校", field="school")
        student_id = (student_id or "").strip()
        errors: dict[str, str] = {}
        if not student_id:
            errors["student_id"] = "学号是必需的"
        try:
            method = SchoolVerificationMethod((method or "").strip())
        except ValueError:
            errors["verification_method"] = "不支持的认证方式"
        if errors:
            raise ValidationError("请提供学号和认证方式", errors=errors)

        if user.school_verification_status in _BLOCKING_STATUSES:
            raise VerificationConflict(
                "学校认证审核中，请勿重复提交"
                if user.school_verification_status == SchoolVerificationStatus.PENDING
                else "学校认证已通过"
            )

        user.school_student_id = student_id
        user.school_verification_method = method
        user.school_verification_proof = (proof or "").strip() or None
        user.school_verification_status = SchoolVerificationStatus.PENDING
        user.school_verification_submitted_at = datetime.now(timezone.utc)
        user.school_verified_at = None
        user.school_verified_by = None
        self.store.save(user)
        logger.info("school verification submitted user_id=%s method=%s", user.id, method)
        return user

    def review(self, user: User, *, reviewer_id: UUID | str, approved: bool) -> User:
        """审核人处理待审核申请。"""
        if user.school_verification_status != SchoolVerificationStatus.PENDING:
            raise VerificationConflict("当前没有待审核的学校认证")
        user.school_verification_status = (
            SchoolVerificationStatus.APPROVED if approved else SchoolVerificationStatus.REJECTED
        )
        user.school_verified_at = datetime.now(timezone.utc)
        user.school_verified_by = str(reviewer_id)
        self.store.save(user)
        logger.info(
            "school verification reviewed user_id=%s status=%s", user.id, user.school_verification_status
        )
        return user
