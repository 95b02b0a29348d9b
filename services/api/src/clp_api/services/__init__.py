"""服务层能力导出集合。"""

from clp_api.services.credential_store import CredentialStore, check_invariants, normalize_email
from clp_api.services.identity import IdentityService, ResolvedAccount, SessionBundle
from clp_api.services.local_auth import hash_password, hash_token, verify_password
from clp_api.services.otp import SmsCodeSender, VerificationCodeStore, build_code_sender, build_code_store, generate_code
from clp_api.services.reset_tokens import SecretTokenManager
from clp_api.services.school_verification import SchoolVerificationWorkflow, verification_view
from clp_api.services.wechat import ExternalIdentity, WechatIdentityVerifier, build_identity_verifier

__all__ = [
    "CredentialStore",
    "check_invariants",
    "normalize_email",
    "IdentityService",
    "ResolvedAccount",
    "SessionBundle",
    "hash_password",
    "hash_token",
    "verify_password",
    "SmsCodeSender",
    "VerificationCodeStore",
    "build_code_sender",
    "build_code_store",
    "generate_code",
    "SecretTokenManager",
    "SchoolVerificationWorkflow",
    "verification_view",
    "ExternalIdentity",
    "WechatIdentityVerifier",
    "build_identity_verifier",
]
