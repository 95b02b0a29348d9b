"""微信登录凭证校验。"""

from __future__ import annotations

from dataclasses import dataclass
import logging

import requests

from clp_api.core.config import Settings
from clp_api.errors import ExternalAuthError

logger = logging.getLogger("clp_api.wechat")


@dataclass(frozen=True)
class ExternalIdentity:
    """第三方身份：OpenID 必有，UnionID 仅在开放平台绑定时返回。"""

    external_id: str
    union_id: str | None = None


class WechatIdentityVerifier:
    """用小程序登录 code 换取 OpenID。

    服务商返回的错误直接抛出，不在这里重试。
    """

    def __init__(
        self,
        *,
        appid: str | None,
        secret: str | None,
        api_url: str = "https://api.weixin.qq.com/sns/jscode2session",
        timeout_seconds: float = 5.0,
        production: bool = False,
        session: requests.Session | None = None,
    ) -> None:
        self.appid = appid
        self.secret = secret
        self.api_url = api_url
        self.timeout_seconds = timeout_seconds
        self.production = production
        self.session = session or requests.Session()

    def exchange(self, code: str) -> ExternalIdentity:
        if not code or not code.strip():
            raise ExternalAuthError("缺少微信登录 code")
        code = code.strip()

        if not self.appid or not self.secret:
            if self.production:
                logger.error("wechat appid/secret not configured")
                raise ExternalAuthError("微信配置未设置")
            logger.warning("wechat not configured, returning mock identity")
            return ExternalIdentity(external_id=f"mock_openid_{code}")

        try:
            resp = self.session.get(
                self.api_url,
                params={
                    "appid": self.appid,
                    "secret": self.secret,
                    "js_code": code,
                    "grant_type": "authorization_code",
                },
                timeout=self.timeout_seconds,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.exception("wechat code exchange request failed")
            raise ExternalAuthError("获取微信 OpenID 失败") from exc

        if data.get("errcode"):
            logger.warning("wechat code exchange rejected errcode=%s errmsg=%s", data.get("errcode"), data.get("errmsg"))
            raise ExternalAuthError(
                data.get("errmsg") or "获取微信 OpenID 失败",
                details={"provider_errcode": data.get("errcode")},
            )

        openid = data.get("openid")
        if not openid:
            raise ExternalAuthError("获取微信 OpenID 失败")
        return ExternalIdentity(external_id=str(openid), union_id=data.get("unionid") or None)


def build_identity_verifier(settings: Settings) -> WechatIdentityVerifier:
    return WechatIdentityVerifier(
        appid=settings.wechat_appid,
        secret=settings.wechat_secret,
        api_url=settings.wechat_api_url,
        timeout_seconds=settings.wechat_timeout_seconds,
        production=settings.is_production,
    )
