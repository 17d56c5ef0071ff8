from typing import Optional
from fastapi import APIRouter, Depends, Query
from campus_orders.api.deps import get_app_settings, get_identity, get_role_service, require_admin
from campus_orders.api.responses import ok
from campus_orders.application.role_applications import RoleApplicationService, parse_application_type
from campus_orders.application.schemas import (
    ApplicationStatusRequest,
    BatchReviewRequest,
    ReviewRequest,
    RoleApplicationCreate,
    RoleApplicationDetail,
    RoleApplicationRead,
    TokenRequest,
)
from campus_orders.application.service import pagination
from campus_orders.core_settings import Settings
from campus_orders.domain.exceptions import Forbidden
from campus_orders.domain.models import RoleApplication
from campus_orders.domain.status import ApplicationType
from campus_orders.infrastructure.auth import Identity, create_access_token

router = APIRouter(tags=["users"])


def _detail(application: RoleApplication) -> dict:
    return RoleApplicationDetail.model_validate(application).model_dump(by_alias=True, mode="json")


def _application(application: RoleApplication) -> dict:
    return RoleApplicationRead.model_validate(application).model_dump(by_alias=True, mode="json")


@router.post("/user/apply-delivery")
async def apply_delivery(
    payload: RoleApplicationCreate,
    identity: Identity = Depends(get_identity),
    service: RoleApplicationService = Depends(get_role_service),
):
    application = await service.apply(identity.user_id, ApplicationType.DELIVERY, payload)
    return ok(_application(application), "application submitted, please wait for review")

@router.post("/user/apply-receiver")
async def apply_receiver(
    payload: RoleApplicationCreate,
    identity: Identity = Depends(get_identity),
    service: RoleApplicationService = Depends(get_role_service),
):
    application = await service.apply(identity.user_id, ApplicationType.RECEIVER, payload)
    return ok(_application(application), "application submitted, please wait for review")

@router.post("/user/application-status")
async def application_status(
    payload: ApplicationStatusRequest,
    identity: Identity = Depends(get_identity),
    service: RoleApplicationService = Depends(get_role_service),
):
    application = await service.latest(identity.user_id, parse_application_type(payload.application_type))
    return ok(_application(application) if application else None)

@router.post("/admin/review-application")
async def review_application(
    payload: ReviewRequest,
    admin: Identity = Depends(require_admin),
    service: RoleApplicationService = Depends(get_role_service),
):
    application = await service.review(payload.application_id, payload.action, admin.user_id, payload.review_comment)
    return ok(_application(application), f"application {application.status}")

@router.post("/auth/token")
async def issue_token(payload: TokenRequest, settings: Settings = Depends(get_app_settings)):
    """Development helper that signs a token for any user id"""
    if not settings.ALLOW_DEV_TOKENS:
        raise Forbidden("development tokens are disabled")
    token = create_access_token(payload.user_id, payload.name, payload.role, settings=settings)
    return ok({"token": token, "tokenType": "bearer", "expiresIn": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60})


@router.post("/user/my-applications")
async def my_applications(
    identity: Identity = Depends(get_identity),
    service: RoleApplicationService = Depends(get_role_service),
):
    applications = await service.applications_for_user(identity.user_id)
    return ok([_application(application) for application in applications])


@router.get("/admin/applications")
async def list_applications(
    application_type: Optional[str] = Query(None, alias="applicationType"),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: Identity = Depends(require_admin),
    service: RoleApplicationService = Depends(get_role_service),
):
    applications, total = await service.list_applications(application_type, status, page, limit)
    return ok({
        "applications": [_detail(application) for application in applications],
        "pagination": pagination(page, limit, total),
    })


@router.get("/admin/application/{application_id}")
async def application_detail(
    application_id: int,
    admin: Identity = Depends(require_admin),
    service: RoleApplicationService = Depends(get_role_service),
):
    return ok(_detail(await service.get_application(application_id)))


@router.post("/admin/batch-review-applications")
async def batch_review_applications(
    payload: BatchReviewRequest,
    admin: Identity = Depends(require_admin),
    service: RoleApplicationService = Depends(get_role_service),
):
    result = await service.batch_review(payload.applications, admin.user_id)
    return ok(result, f"batch review finished, {result['successCount']} applications reviewed")
