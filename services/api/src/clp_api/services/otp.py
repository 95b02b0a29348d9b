"""短信验证码通道。

验证码按手机号缓存，每个手机号同一时刻只有一个有效验证码：重新下发会覆盖旧码。
配置 Redis 时写入 Redis，未配置或 Redis 不可用时回退到进程内缓存。
"""

from __future__ import annotations

from collections.abc import Callable
import hmac
import logging
import re
import secrets
from threading import Lock
import time

import requests
from redis import Redis
from redis.exceptions import RedisError

from clp_api.core.config import Settings

logger = logging.getLogger("clp_api.otp")

PHONE_PATTERN = re.compile(r"^1[3-9]\d{9}$")
CODE_LENGTH = 6

# 比较并删除需要原子执行，避免同一验证码被并发消费两次。
_CONSUME_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
  return redis.call('del', KEYS[1])
end
return 0
"""


def is_valid_phone(phone: str) -> bool:
    return bool(PHONE_PATTERN.match(phone or ""))


def generate_code() -> str:
    """生成 000000-999999 范围内均匀分布的 6 位数字验证码。"""
    return f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"


class VerificationCodeStore:
    """带过期时间的验证码缓存。"""

    def __init__(
        self,
        *,
        ttl_seconds: int = 300,
        prefix: str = "auth:otp:",
        redis_client: Redis | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self.redis_client = redis_client
        self.clock = clock
        self._local: dict[str, tuple[str, float]] = {}
        self._lock = Lock()

    def _key(self, phone: str) -> str:
        return f"{self.prefix}{phone}"

    def _cleanup_local(self, now_ts: float) -> None:
        expired_keys = [key for key, (_, expires_at) in self._local.items() if expires_at <= now_ts]
        for key in expired_keys:
            self._local.pop(key, None)

    def issue(self, phone: str, code: str) -> None:
        """写入验证码并覆盖该手机号此前的验证码。"""
        key = self._key(phone)
        if self.redis_client is not None:
            try:
                self.redis_client.setex(key, self.ttl_seconds, code)
            except RedisError:
                logger.error("redis unavailable, otp stored in local cache only phone=%s", phone)
            else:
                # Redis 恢复后写入的新码优先，丢弃故障期间的本地旧码。
                with self._lock:
                    self._local.pop(key, None)
                return

        now_ts = self.clock()
        with self._lock:
            self._cleanup_local(now_ts)
            self._local[key] = (code, now_ts + self.ttl_seconds)

    def _local_entry(self, key: str) -> tuple[str, float] | None:
        now_ts = self.clock()
        with self._lock:
            self._cleanup_local(now_ts)
            return self._local.get(key)

    def check(self, phone: str, code: str) -> bool:
        """只校验不作废，用于在真正消费前先完成其他前置校验。

        本地缓存中的验证码只可能是 Redis 故障期间下发的，总是比 Redis 中的更新。
        """
        key = self._key(phone)
        entry = self._local_entry(key)
        if entry is not None or self.redis_client is None:
            return entry is not None and hmac.compare_digest(entry[0], code)
        try:
            current = self.redis_client.get(key)
        except RedisError:
            logger.error("redis unavailable, cannot check otp phone=%s", phone)
            return False
        return current is not None and hmac.compare_digest(str(current), code)

    def consume(self, phone: str, code: str) -> bool:
        """校验并作废验证码。错误的验证码不会使有效验证码失效。"""
        key = self._key(phone)
        now_ts = self.clock()
        with self._lock:
            self._cleanup_local(now_ts)
            entry = self._local.get(key)
            if entry is not None:
                if not hmac.compare_digest(entry[0], code):
                    return False
                self._local.pop(key, None)
                return True
        if self.redis_client is None:
            return False
        try:
            return bool(self.redis_client.eval(_CONSUME_SCRIPT, 1, key, code))
        except RedisError:
            logger.error("redis unavailable, cannot consume otp phone=%s", phone)
            return False


class SmsCodeSender:
    """通过短信服务商下发验证码。"""

    def __init__(
        self,
        *,
        api_url: str | None,
        api_key: str | None = None,
        timeout_seconds: float = 5.0,
        production: bool = False,
        session: requests.Session | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.production = production
        self.session = session or requests.Session()

    def dispatch(self, phone: str, code: str) -> bool:
        """下发验证码，返回是否发送成功。"""
        if not self.api_url:
            if self.production:
                logger.error("sms provider not configured, cannot deliver code")
                return False
            # 开发环境没有短信服务商时直接输出到日志。
            logger.info("sms code phone=%s code=%s", phone, code)
            return True

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            resp = self.session.post(
                self.api_url,
                json={"phone": phone, "code": code, "template": "verification"},
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException:
            logger.exception("sms dispatch failed phone=%s", phone)
            return False
        if resp.status_code != 200:
            logger.error("sms provider rejected phone=%s status=%s", phone, resp.status_code)
            return False
        return True


_local_store: VerificationCodeStore | None = None
_local_store_lock = Lock()


def build_code_store(settings: Settings) -> VerificationCodeStore:
    """按配置构造验证码缓存；未配置 Redis 时复用进程内单例以保留已下发的验证码。"""
    global _local_store
    if settings.redis_url:
        return VerificationCodeStore(
            ttl_seconds=settings.otp_code_ttl_seconds,
            prefix=settings.otp_cache_prefix,
            redis_client=_get_redis(settings.redis_url),
        )
    with _local_store_lock:
        if _local_store is None:
            _local_store = VerificationCodeStore(
                ttl_seconds=settings.otp_code_ttl_seconds,
                prefix=settings.otp_cache_prefix,
            )
        return _local_store


_redis_clients: dict[str, Redis] = {}


def _get_redis(redis_url: str) -> Redis:
    client = _redis_clients.get(redis_url)
    if client is None:
        client = Redis.from_url(redis_url, decode_responses=True)
        _redis_clients[redis_url] = client
    return client


def build_code_sender(settings: Settings) -> SmsCodeSender:
    return SmsCodeSender(
        api_url=settings.sms_api_url,
        api_key=settings.sms_api_key,
        timeout_seconds=settings.sms_timeout_seconds,
        production=settings.is_production,
    )
