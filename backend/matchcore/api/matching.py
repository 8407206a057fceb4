"""REST API surface for the discovery feed, swipes, matches and compatibility."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from matchcore.domain.matching.exceptions import (
	ConflictError,
	InsufficientDataError,
	MatchingError,
	ProfileNotFound,
	StoreFailure,
	SwipeRateLimitExceeded,
	TransientStoreError,
	ValidationError,
)
from matchcore.domain.matching.feed import FeedBuilder
from matchcore.domain.matching.lifecycle import SwipeService
from matchcore.domain.matching.repository import MatchingRepository
from matchcore.domain.matching.schemas import (
	CompatibilityResponse,
	FeedResponse,
	MatchListResponse,
	MatchStatusResponse,
	MatchSummary,
	SwipePayload,
	SwipeResponse,
)
from matchcore.infra.auth import AuthenticatedUser, get_current_user
from matchcore.settings import settings

router = APIRouter(tags=["matching"])


def _map_error(exc: Exception) -> HTTPException:
	if isinstance(exc, SwipeRateLimitExceeded):
		return HTTPException(
			status.HTTP_429_TOO_MANY_REQUESTS,
			detail=exc.reason,
			headers={"Retry-After": str(exc.retry_after)},
		)
	if isinstance(exc, ProfileNotFound):
		return HTTPException(status.HTTP_404_NOT_FOUND, detail=exc.reason)
	if isinstance(exc, ValidationError):
		return HTTPException(status.HTTP_400_BAD_REQUEST, detail=exc.reason)
	if isinstance(exc, InsufficientDataError):
		return HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.reason)
	if isinstance(exc, TransientStoreError):
		return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.reason, headers={"Retry-After": "1"})
	if isinstance(exc, StoreFailure):
		return HTTPException(status.HTTP_502_BAD_GATEWAY, detail=exc.reason)
	if isinstance(exc, ConflictError):
		return HTTPException(status.HTTP_409_CONFLICT, detail=exc.reason)
	if isinstance(exc, MatchingError):
		return HTTPException(status.HTTP_400_BAD_REQUEST, detail=exc.reason)
	return HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc))


async def get_repository(auth_user: AuthenticatedUser = Depends(get_current_user)) -> MatchingRepository:
	return MatchingRepository.for_session(auth_user)


@router.get("/feed", response_model=FeedResponse)
async def get_feed(
	limit: int = Query(default=settings.feed_default_limit, ge=1, le=settings.feed_max_limit),
	offset: int = Query(default=0, ge=0),
	user_id: Optional[UUID] = Query(default=None),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	repo: MatchingRepository = Depends(get_repository),
) -> FeedResponse:
	try:
		requester_id = str(UUID(auth_user.id))
	except ValueError:
		raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="invalid_user_id") from None
	if user_id is not None and str(user_id) != requester_id:
		raise HTTPException(status.HTTP_403_FORBIDDEN, detail="user_mismatch")
	try:
		page = await FeedBuilder(repo).build(requester_id, limit=limit, offset=offset)
	except MatchingError as exc:
		raise _map_error(exc) from None
	return page.to_schema()


@router.post("/swipes", response_model=SwipeResponse)
async def post_swipe(
	payload: SwipePayload,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	repo: MatchingRepository = Depends(get_repository),
) -> SwipeResponse:
	try:
		outcome = await SwipeService(repo).swipe(auth_user.id, payload.target_id, payload.type)
	except (MatchingError, SwipeRateLimitExceeded) as exc:
		raise _map_error(exc) from None
	if not outcome.matched or outcome.match is None:
		return SwipeResponse(matched=False)
	return SwipeResponse(
		matched=True,
		match_id=outcome.match.id,
		compatibility=outcome.match.compatibility_score,
		other_user_id=outcome.other_user_id,
	)


@router.post("/swipes/undo", status_code=status.HTTP_204_NO_CONTENT)
async def undo_swipe(
	payload: SwipePayload,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	repo: MatchingRepository = Depends(get_repository),
) -> Response:
	try:
		await SwipeService(repo).undo(auth_user.id, payload.target_id, payload.type)
	except MatchingError as exc:
		raise _map_error(exc) from None
	return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/matches", response_model=MatchListResponse)
async def list_matches(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	repo: MatchingRepository = Depends(get_repository),
) -> MatchListResponse:
	try:
		listings = await SwipeService(repo).get_matches(auth_user.id)
	except MatchingError as exc:
		raise _map_error(exc) from None
	return MatchListResponse(
		items=[
			MatchSummary(
				id=listing.match.id,
				other_user_id=listing.other_user_id,
				other_user_name=listing.other_name,
				other_user_age=listing.other_age,
				compatibility_score=listing.match.compatibility_score,
				matched_at=listing.match.matched_at,
				blur_points=listing.match.blur_points,
				is_unblurred=listing.match.is_unblurred,
			)
			for listing in listings
		]
	)


@router.get("/matches/{other_user_id}", response_model=MatchStatusResponse)
async def get_match_status(
	other_user_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	repo: MatchingRepository = Depends(get_repository),
) -> MatchStatusResponse:
	try:
		matched = await SwipeService(repo).are_matched(auth_user.id, other_user_id)
	except MatchingError as exc:
		raise _map_error(exc) from None
	return MatchStatusResponse(other_user_id=other_user_id, matched=matched)

@router.get("/compatibility/{other_user_id}", response_model=CompatibilityResponse)
async def get_compatibility(
	other_user_id: UUID,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	repo: MatchingRepository = Depends(get_repository),
) -> CompatibilityResponse:
	try:
		breakdown = await SwipeService(repo).compatibility(auth_user.id, other_user_id)
	except MatchingError as exc:
		raise _map_error(exc) from None
	return CompatibilityResponse.model_validate(breakdown)
