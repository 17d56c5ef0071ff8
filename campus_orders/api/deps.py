import secrets
from typing import Optional
from fastapi import Depends, Header, Request
from campus_orders.application.role_applications import RoleApplicationService
from campus_orders.application.service import OrderService
from campus_orders.core_settings import Settings
from campus_orders.domain.exceptions import Forbidden, Unauthenticated
from campus_orders.infrastructure.auth import Identity, decode_access_token
from shared.core import set_request_context

BEARER_PREFIX = "Bearer "


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service


def get_role_service(request: Request) -> RoleApplicationService:
    return request.app.state.role_service


async def get_identity(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings),
) -> Identity:
    """Resolve the caller from ``Authorization``; the ``Bearer`` prefix is optional"""
    if not authorization or not authorization.strip():
        raise Unauthenticated("please log in first")

    token = authorization.strip()
    if token.startswith(BEARER_PREFIX):
        token = token[len(BEARER_PREFIX):].strip()

    identity = decode_access_token(token, settings)
    set_request_context(user_id=str(identity.user_id))
    return identity


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("admin role required")
    return identity


def verify_wechat_notify(
    x_wechat_notify_token: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Only the payment provider, holding the shared token, may report settlements"""
    if not settings.WECHAT_NOTIFY_TOKEN:
        raise Forbidden("payment callback verification is not configured")
    if not x_wechat_notify_token or not secrets.compare_digest(x_wechat_notify_token, settings.WECHAT_NOTIFY_TOKEN):
        raise Unauthenticated("invalid payment callback token")
