"""Permission check API endpoint."""

from fastapi import APIRouter, Depends, HTTPException, status

from agencycrm.api.deps import get_current_user, get_rbac_service
from agencycrm.api.schemas.rbac import CheckRequest, CheckResponse, CheckResult
from agencycrm.core.rbac.service import RBACService
from agencycrm.db.models import User

router = APIRouter(tags=["permissions"])


@router.post("/check", response_model=CheckResponse)
async def check_permissions(
    data: CheckRequest,
    current_user: User = Depends(get_current_user),
    service: RBACService = Depends(get_rbac_service),
):
    """
    Run one or more permission checks.

    Checks run for the caller unless ``user_id`` names someone else, which
    needs ``roles:read``. Deciding role/binding details are only returned
    to callers holding ``roles:manage``.
    """
    user_id = data.user_id or current_user.id
    if user_id != current_user.id:
        if not service.check_permission(current_user.id, "roles", "read").allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Checking another user's permissions requires roles:read",
            )
    include_policy = service.check_permission(current_user.id, "roles", "manage").allowed

    batch = service.check_permissions(user_id, [item.model_dump() for item in data.checks])
    service.record_check(current_user.id, user_id, batch)
    results = [
        CheckResult(
            resource=check["resource"],
            action=check["action"],
            resource_id=check.get("resource_id"),
            **result.to_dict(include_policy=include_policy),
        )
        for check, result in batch["results"]
    ]
    return CheckResponse(user_id=user_id, results=results, summary=batch["summary"])
