"""
FastAPI 依赖注入模块

- get_db: 请求级数据库会话
- get_current_auth / get_admin_auth: 从 Bearer token 解析调用方身份
- get_fulfillment_service: 绑定到当前请求会话的履约服务
"""
from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError
from sqlmodel import Session

from storefront.api.errors import forbidden
from storefront.api.schemas import TokenPayload
from storefront.core import security
from storefront.core.db import engine
from storefront.models import User
from storefront.services.delivery_gateway import get_delivery_gateway
from storefront.services.fulfillment import FulfillmentService
from storefront.services.notifier import get_notifier

# 从请求头 Authorization: Bearer <token> 中提取 token
reusable_oauth2 = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
TokenDep = Annotated[HTTPAuthorizationCredentials, Depends(reusable_oauth2)]


def _credentials_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    """
    获取当前登录用户

    token 由认证服务用同一个 SECRET_KEY 签发，``sub`` 为用户 ID。

    Raises:
        HTTPException: token 无效或用户不存在时返回 401
    """
    try:
        payload = security.decode_access_token(token.credentials)
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        raise _credentials_error()
    if not token_data.sub:
        raise _credentials_error()
    try:
        user_id = int(token_data.sub)
    except ValueError:
        raise _credentials_error()
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


def get_current_auth(current_user: CurrentUser) -> security.AuthContext:
    return security.AuthContext(user_id=current_user.id, is_admin=current_user.is_admin)


CurrentAuth = Annotated[security.AuthContext, Depends(get_current_auth)]


def get_admin_auth(auth: CurrentAuth) -> security.AuthContext:
    if not auth.is_admin:
        raise forbidden("Admin access required")
    return auth


AdminAuth = Annotated[security.AuthContext, Depends(get_admin_auth)]


def get_fulfillment_service(session: SessionDep) -> FulfillmentService:
    return FulfillmentService(
        session,
        delivery_gateway=get_delivery_gateway(),
        notifier=get_notifier(),
    )


FulfillmentDep = Annotated[FulfillmentService, Depends(get_fulfillment_service)]
