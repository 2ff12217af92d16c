from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from pydantic import BaseModel, ConfigDict

from storefront.core.config import settings

ALGORITHM = "HS256"


class AuthContext(BaseModel):
    """
    调用方身份

    每个请求根据 Bearer token 构建一次，显式传给每个服务方法。
    """
    model_config = ConfigDict(frozen=True)

    user_id: int
    is_admin: bool = False


def create_access_token(subject: str | Any, expires_delta: timedelta) -> str:
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> dict[str, Any]:
    """解析并校验 token，失败时抛出 ``jwt.InvalidTokenError``"""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
