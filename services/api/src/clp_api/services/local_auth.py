"""口令与一次性令牌哈希。"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets

from clp_api.core.config import get_settings

PASSWORD_HASH_ALGORITHM = "pbkdf2_sha256"


def hash_password(password: str, *, iterations: int | None = None) -> str:
    """使用 PBKDF2-SHA256 生成加盐口令哈希。"""
    rounds = iterations or get_settings().auth_password_hash_iterations
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    salt_b64 = base64.b64encode(salt).decode("ascii")
    digest_b64 = base64.b64encode(digest).decode("ascii")
    return f"{PASSWORD_HASH_ALGORITHM}${rounds}${salt_b64}${digest_b64}"


def verify_password(password: str, password_hash: str | None) -> bool:
    """校验口令是否匹配，哈希缺失或格式异常一律视为不匹配。"""
    if not password_hash:
        return False
    try:
        algorithm, iterations_text, salt_b64, expected_digest_b64 = password_hash.split("$", 3)
        if algorithm != PASSWORD_HASH_ALGORITHM:
            return False
        iterations = int(iterations_text)
        salt = base64.b64decode(salt_b64.encode("ascii"))
        expected_digest = base64.b64decode(expected_digest_b64.encode("ascii"))
    except (ValueError, TypeError, binascii.Error):
        return False

    actual_digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(actual_digest, expected_digest)


def hash_token(token: str) -> str:
    """一次性令牌的存储摘要。"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_token(num_bytes: int = 32) -> str:
    """生成十六进制随机令牌明文。"""
    return secrets.token_hex(num_bytes)
