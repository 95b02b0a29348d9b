"""ORM 模型导出集合。"""

from clp_api.models.user import User

__all__ = ["User"]
