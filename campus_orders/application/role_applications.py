import re
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from campus_orders.application.schemas import BatchReviewItem, RoleApplicationCreate
from campus_orders.domain.exceptions import ConflictError, DomainException, NotFound, ValidationError
from campus_orders.domain.models import RoleApplication, utcnow
from campus_orders.domain.status import ApplicationStatus, ApplicationType
from campus_orders.infrastructure.account_store import AccountStore
from campus_orders.infrastructure.db import Database
from shared.core import get_logger

logger = get_logger(__name__)

ID_NUMBER_PATTERN = re.compile(
    r"^[1-9]\d{5}(18|19|20)\d{2}(0[1-9]|1[0-2])(0[1-9]|[12]\d|3[01])\d{3}[\dXx]$"
)
PHONE_PATTERN = re.compile(r"^1[3-9]\d{9}$")

REQUIRED_FIELDS = ("real_name", "id_number", "student_number", "phone", "id_card_front_url", "id_card_back_url")
REVIEW_ACTIONS = {
    "approve": ApplicationStatus.APPROVED,
    "reject": ApplicationStatus.REJECTED,
}
DEFAULT_REVIEW_COMMENTS = {
    "approve": "application approved",
    "reject": "application rejected",
}


def parse_application_type(value: str) -> ApplicationType:
    try:
        return ApplicationType(value)
    except ValueError:
        raise ValidationError(f"unknown application type: {value}", field="applicationType") from None


def parse_application_status(value: str) -> ApplicationStatus:
    try:
        return ApplicationStatus(value)
    except ValueError:
        raise ValidationError(f"unknown application status: {value}", field="status") from None


class RoleApplicationService:
    """Applications to become a delivery user or a parcel receiver, and their review"""

    def __init__(self, database: Database, accounts: AccountStore):
        self.database = database
        self.accounts = accounts

    async def apply(self, user_id: int, application_type: ApplicationType, data: RoleApplicationCreate) -> RoleApplication:
        missing = [name for name in REQUIRED_FIELDS if not (getattr(data, name) or "").strip()]
        if missing:
            raise ValidationError(f"missing required fields: {', '.join(missing)}", field=missing[0])
        if not ID_NUMBER_PATTERN.match(data.id_number):
            raise ValidationError("invalid id number", field="idNumber")
        if not PHONE_PATTERN.match(data.phone):
            raise ValidationError("invalid phone number", field="phone")

        user = await self.accounts.get_user(user_id)
        if user is None:
            raise NotFound("user", user_id)
        has_role = user.is_delivery if application_type is ApplicationType.DELIVERY else user.is_receiver
        if has_role:
            raise ValidationError(f"you already hold the {application_type.value} role")

        pending = await self.latest(user_id, application_type)
        if pending is not None and pending.status == ApplicationStatus.PENDING:
            raise ValidationError("an application is already under review")

        now = utcnow()
        application = RoleApplication(
            user_id=user_id,
            application_type=application_type.value,
            real_name=data.real_name.strip(),
            id_number=data.id_number.upper(),
            student_number=data.student_number.strip(),
            phone=data.phone,
            id_card_front_url=data.id_card_front_url,
            id_card_back_url=data.id_card_back_url,
            status=ApplicationStatus.PENDING.value,
            review_comment="",
            create_time=now,
            update_time=now,
        )
        try:
            async with self.database.transaction() as session:
                session.add(application)
        except IntegrityError:
            raise ValidationError("an application is already under review") from None

        logger.info(
            f"Role application submitted: {application_type.value}",
            extra={'extra_fields': {'application_id': application.id, 'user_id': user_id}},
        )
        return application

    async def latest(self, user_id: int, application_type: ApplicationType) -> Optional[RoleApplication]:
        async with self.database.session() as session:
            result = await session.execute(
                select(RoleApplication)
                .where(
                    RoleApplication.user_id == user_id,
                    RoleApplication.application_type == application_type.value,
                )
                .order_by(RoleApplication.create_time.desc(), RoleApplication.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def review(self, application_id: int, action: str, reviewer_id: int, comment: str = "") -> RoleApplication:
        """
        Approve or reject a pending application.

        The status change and, on approval, the user's role flag are written
        in one transaction; any failure leaves both untouched.
        """
        decision = REVIEW_ACTIONS.get(action)
        if decision is None:
            raise ValidationError(f"unsupported review action: {action}", field="action")

        now = utcnow()
        async with self.database.transaction() as session:
            application = await session.get(RoleApplication, application_id)
            if application is None:
                raise NotFound("application", application_id)
            if application.status != ApplicationStatus.PENDING:
                raise ValidationError("application has already been reviewed")

            result = await session.execute(
                update(RoleApplication)
                .where(
                    RoleApplication.id == application_id,
                    RoleApplication.status == ApplicationStatus.PENDING.value,
                )
                .values(
                    status=decision.value,
                    review_comment=comment,
                    reviewed_by=reviewer_id,
                    review_time=now,
                    update_time=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError("application was reviewed concurrently")

            if decision is ApplicationStatus.APPROVED:
                granted = await self.accounts.grant_role(
                    session, application.user_id, ApplicationType(application.application_type)
                )
                if not granted:
                    raise NotFound("user", application.user_id)

            await session.refresh(application)

        logger.info(
            f"Role application {application_id} {decision.value}",
            extra={'extra_fields': {
                'application_id': application_id,
                'user_id': application.user_id,
                'reviewer_id': reviewer_id,
            }},
        )
        return application

    # ---- admin ------------------------------------------------------------

    async def list_applications(
        self,
        application_type: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[RoleApplication], int]:
        """Newest first, optionally narrowed by type and review status"""
        conditions = []
        if application_type:
            conditions.append(RoleApplication.application_type == parse_application_type(application_type).value)
        if status:
            conditions.append(RoleApplication.status == parse_application_status(status).value)

        async with self.database.session() as session:
            total = await session.scalar(select(func.count()).select_from(RoleApplication).where(*conditions))
            result = await session.execute(
                select(RoleApplication)
                .where(*conditions)
                .order_by(RoleApplication.create_time.desc(), RoleApplication.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return list(result.scalars()), total or 0

    async def get_application(self, application_id: int) -> RoleApplication:
        async with self.database.session() as session:
            application = await session.get(RoleApplication, application_id)
        if application is None:
            raise NotFound("application", application_id)
        return application

    async def applications_for_user(self, user_id: int) -> List[RoleApplication]:
        async with self.database.session() as session:
            result = await session.execute(
                select(RoleApplication)
                .where(RoleApplication.user_id == user_id)
                .order_by(RoleApplication.create_time.desc(), RoleApplication.id.desc())
            )
            return list(result.scalars())

    async def batch_review(self, items: List[BatchReviewItem], reviewer_id: int) -> Dict[str, Any]:
        """
        Review many applications in one call.

        The whole request is refused when any item carries an unknown action
        or rejects without a comment. Otherwise every item is reviewed in its
        own transaction and a failing item is reported without affecting the
        rest.
        """
        for item in items:
            if item.action not in REVIEW_ACTIONS:
                raise ValidationError(f"unsupported review action: {item.action}", field="action")
            if item.action == "reject" and not item.review_comment.strip():
                raise ValidationError("a comment is required to reject an application", field="reviewComment")

        results, errors = [], []
        for item in items:
            comment = item.review_comment.strip() or DEFAULT_REVIEW_COMMENTS[item.action]
            try:
                application = await self.review(item.application_id, item.action, reviewer_id, comment)
            except DomainException as e:
                errors.append({"applicationId": item.application_id, "error": e.message})
                continue
            except Exception:
                logger.exception(
                    f"Batch review failed for application {item.application_id}",
                    extra={'extra_fields': {'application_id': item.application_id, 'reviewer_id': reviewer_id}},
                )
                errors.append({"applicationId": item.application_id, "error": "internal error"})
                continue
            results.append({
                "applicationId": application.id,
                "applicationType": application.application_type,
                "realName": application.real_name,
                "status": application.status,
                "action": item.action,
            })

        logger.info(
            f"Batch review by {reviewer_id}: {len(results)} reviewed, {len(errors)} failed",
            extra={'extra_fields': {'reviewer_id': reviewer_id, 'application_ids': [i.application_id for i in items]}},
        )
        return {"successCount": len(results), "errorCount": len(errors), "results": results, "errors": errors}
