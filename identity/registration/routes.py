"""
Identity Backend - Registration Routes

- POST   /registration/start          - Create a pending account
- POST   /registration/activate       - Activate or verify an account (admin)
- GET    /registration/check-email    - Email availability
- GET    /registration/status         - Where a registration stands
- POST   /registration/cleanup        - Remove one pending registration (admin)
- POST   /registration/cleanup/bulk   - Purge stale pending registrations (admin)
- GET    /registration/cache/stats    - Availability cache statistics (admin)
- DELETE /registration/cache          - Clear the availability cache (admin)
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from identity.auth.dependencies import AuthenticatedUser, get_current_user, get_runtime, require_role
from identity.auth.schemas import ErrorResponse
from identity.registration.availability import AvailabilityResult, CacheStats
from identity.registration.cleanup import BulkCleanupResult, CleanupResult, RegistrationStatus
from identity.registration.schemas import (
    ActivationRequest,
    BulkCleanupRequest,
    CleanupRequest,
    RegistrationResponse,
    RegistrationStartRequest,
)
from identity.users.roles import UserRole
from identity.users.service import RegistrationData


router = APIRouter(prefix="/registration", tags=["registration"])


def _registration_response(runtime, record) -> RegistrationResponse:
    return RegistrationResponse(
        user_id=record.id,
        email=record.email,
        role=record.role,
        status=record.status,
        is_active=record.is_active,
        title=runtime.accounts.title_for(record.role, record),
        created_at=record.created_at,
    )


@router.post(
    "/start",
    response_model=RegistrationResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Start a registration",
)
async def start_registration(request: Request, body: RegistrationStartRequest):
    """
    Create a pending account for the requested role.

    Raises:
        400: Invalid email format or role
        409: Email already in use
    """
    runtime = get_runtime(request)
    record = await runtime.accounts.register(
        body.role,
        RegistrationData(**body.model_dump(exclude={"role"})),
    )
    return _registration_response(runtime, record)


@router.post(
    "/activate",
    response_model=RegistrationResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Activate or verify an account",
)
@require_role(UserRole.ADMIN)
async def activate(
    request: Request,
    body: ActivationRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    runtime = get_runtime(request)
    if body.mode == "verify_email":
        record = await runtime.accounts.verify_email(body.role, body.user_id)
    else:
        record = await runtime.accounts.activate_account(body.role, body.user_id)
    return _registration_response(runtime, record)


@router.get(
    "/check-email",
    response_model=AvailabilityResult,
    responses={400: {"model": ErrorResponse}},
    summary="Check email availability",
)
async def check_email(
    request: Request,
    email: str = Query(...),
    use_cache: bool = Query(default=True),
    include_details: bool = Query(default=False),
):
    cache = get_runtime(request).availability
    options = cache.default_options.model_copy(
        update={"use_cache": use_cache, "include_user_details": include_details}
    )
    return await cache.check(email, options)


@router.get("/status", response_model=RegistrationStatus, summary="Registration status")
async def registration_status(request: Request, email: str = Query(...)):
    return await get_runtime(request).cleanup.status(email)


@router.post("/cleanup", response_model=CleanupResult, summary="Remove a pending registration")
@require_role(UserRole.ADMIN)
async def cleanup_one(
    request: Request,
    body: CleanupRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    return await get_runtime(request).cleanup.cleanup_one(
        body.email, body.role, body.reason, body.step
    )


@router.post(
    "/cleanup/bulk",
    response_model=BulkCleanupResult,
    summary="Purge stale pending registrations",
)
@require_role(UserRole.ADMIN)
async def bulk_cleanup(
    request: Request,
    body: Optional[BulkCleanupRequest] = None,
    user: AuthenticatedUser = Depends(get_current_user),
):
    runtime = get_runtime(request)
    hours = body.stale_after_hours if body is not None else None
    if hours is None:
        return await runtime.cleanup_driver.run_now()
    return await runtime.cleanup.bulk_cleanup(hours)


@router.get("/cache/stats", response_model=CacheStats, summary="Availability cache statistics")
@require_role(UserRole.ADMIN)
async def cache_stats(request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    return get_runtime(request).availability.stats()


@router.delete("/cache", summary="Clear the availability cache")
@require_role(UserRole.ADMIN)
async def clear_cache(
    request: Request,
    email: Optional[str] = Query(default=None),
    user: AuthenticatedUser = Depends(get_current_user),
):
    get_runtime(request).availability.invalidate(email)
    return {"message": "Cache entry cleared" if email else "Cache cleared"}
