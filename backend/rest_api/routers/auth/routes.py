"""
Authentication router.
Handles staff login and caller info.
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from rest_api.models import Branch, BranchUser, User
from rest_api.routers._common import current_principal
from rest_api.services.permissions import Principal
from shared.config.constants import ROLE_PERMISSIONS
from shared.config.logging import auth_logger as logger, mask_email
from shared.config.settings import settings
from shared.infrastructure.db import get_db
from shared.security.auth import sign_jwt
from shared.security.password import verify_password
from shared.security.rate_limit import limiter
from shared.utils.exceptions import ForbiddenError, UnauthorizedError, ValidationError
from shared.utils.schemas import LoginRequest, LoginResponse, UserInfo


router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _user_info(principal: Principal) -> UserInfo:
    return UserInfo(
        id=principal.user_id,
        email=principal.email,
        chain_id=principal.chain_id,
        branch_id=principal.branch_id,
        branch_name=principal.branch_name,
        role=principal.role,
        permissions=list(principal.permissions),
    )


def _pick_assignment(assignments: list[BranchUser], branch_id: int | None) -> BranchUser | None:
    if branch_id is not None:
        return next((a for a in assignments if a.branch_id == branch_id), None)
    if len(assignments) == 1:
        return assignments[0]
    raise ValidationError("branch_id is required for users assigned to several branches")


@router.post("/login", response_model=LoginResponse)
@limiter.limit(settings.login_rate_limit)
def login(request: Request, body: LoginRequest, db: Session = Depends(get_db)) -> LoginResponse:
    """
    Authenticate a staff member and return an access token.

    The token carries the user's chain, the branch they signed in to, their
    role there and the role's permissions.
    """
    user = db.scalar(
        select(User)
        .options(selectinload(User.branch_roles))
        .where(User.email == body.email, User.is_active.is_(True))
    )
    if user is None:
        logger.warning("LOGIN_FAILED: User not found", email=mask_email(body.email))
        raise UnauthorizedError("Invalid email or password")

    if not verify_password(body.password, user.password):
        logger.warning("LOGIN_FAILED: Invalid password", email=mask_email(body.email), user_id=user.id)
        raise UnauthorizedError("Invalid email or password")

    assignments = [a for a in user.branch_roles if a.is_active and a.chain_id == user.chain_id]
    if not assignments:
        logger.warning("LOGIN_FAILED: No branch assignments", email=mask_email(body.email), user_id=user.id)
        raise ForbiddenError("sign in without a branch assignment", user_id=user.id)

    assignment = _pick_assignment(assignments, body.branch_id)
    if assignment is None:
        raise ForbiddenError(f"sign in to branch {body.branch_id}", user_id=user.id)

    branch = db.scalar(
        select(Branch).where(
            Branch.id == assignment.branch_id,
            Branch.chain_id == user.chain_id,
            Branch.is_active.is_(True),
        )
    )
    if branch is None:
        raise ForbiddenError("sign in to an inactive branch", user_id=user.id)

    principal = Principal(
        user_id=user.id,
        email=user.email,
        chain_id=user.chain_id,
        branch_id=branch.id,
        role=assignment.role,
        permissions=tuple(ROLE_PERMISSIONS.get(assignment.role, [])),
        branch_name=branch.name,
    )
    access_token = sign_jwt(principal.to_claims())

    logger.info(
        "LOGIN_SUCCESS",
        email=mask_email(user.email),
        user_id=user.id,
        role=assignment.role,
        branch_id=branch.id,
    )
    return LoginResponse(
        access_token=access_token,
        expires_in=settings.jwt_access_token_expire_minutes * 60,
        user=_user_info(principal),
    )


@router.get("/me", response_model=UserInfo)
def me(principal: Principal = Depends(current_principal)) -> UserInfo:
    """Identity carried by the caller's token."""
    return _user_info(principal)
