"""Swipe and match lifecycle: like, pass, undo and mutual-match creation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional
from uuid import UUID

from matchcore.domain.matching import notifications, scoring
from matchcore.domain.matching.exceptions import (
	InsufficientDataError,
	ProfileNotFound,
	SelfSwipeError,
	SwipeRateLimitExceeded,
	ValidationError,
)
from matchcore.domain.matching.models import Match, MatchListing, SwipeOutcome, SwipeType, UserProfile, pair_key
from matchcore.domain.matching.repository import MatchingRepository
from matchcore.infra import rate_limit
from matchcore.obs import metrics as obs_metrics
from matchcore.settings import settings

logger = logging.getLogger(__name__)


def _normalise_id(value: Any, field_name: str) -> str:
	try:
		return str(UUID(str(value)))
	except (TypeError, ValueError):
		raise ValidationError(f"invalid_{field_name}")


def _validate_pair(actor_id: Any, target_id: Any) -> tuple[str, str]:
	actor = _normalise_id(actor_id, "actor_id")
	target = _normalise_id(target_id, "target_id")
	if actor == target:
		raise SelfSwipeError()
	return actor, target


class SwipeService:
	def __init__(self, repo: MatchingRepository, *, swipe_rate_per_minute: Optional[int] = None) -> None:
		self.repo = repo
		self.swipe_rate_per_minute = (
			settings.swipe_rate_per_minute if swipe_rate_per_minute is None else swipe_rate_per_minute
		)

	async def _check_rate(self, actor_id: str) -> None:
		window = await rate_limit.hit("swipe", actor_id, limit=self.swipe_rate_per_minute)
		if not window.allowed:
			obs_metrics.inc_swipe_rate_limited()
			raise SwipeRateLimitExceeded(retry_after=window.retry_after)

	async def swipe(self, actor_id: Any, target_id: Any, swipe_type: SwipeType) -> SwipeOutcome:
		if swipe_type is SwipeType.LIKE:
			return await self.like(actor_id, target_id)
		await self.pass_(actor_id, target_id)
		return SwipeOutcome(matched=False)

	async def like(self, actor_id: Any, target_id: Any) -> SwipeOutcome:
		actor, target = _validate_pair(actor_id, target_id)
		await self._check_rate(actor)
		inserted = await self.repo.insert_like(actor, target)
		obs_metrics.inc_swipe(SwipeType.LIKE.value, "recorded" if inserted else "duplicate")
		if not await self.repo.exists_mutual_like(actor, target):
			return SwipeOutcome(matched=False)
		match, _ = await self.create_match(actor, target)
		return SwipeOutcome(matched=True, match=match, other_user_id=target)

	async def pass_(self, actor_id: Any, target_id: Any) -> None:
		actor, target = _validate_pair(actor_id, target_id)
		await self._check_rate(actor)
		inserted = await self.repo.insert_pass(actor, target)
		obs_metrics.inc_swipe(SwipeType.PASS.value, "recorded" if inserted else "duplicate")

	async def undo(self, actor_id: Any, target_id: Any, swipe_type: SwipeType) -> bool:
		"""Delete the actor's last like or pass on ``target``. Missing records are a no-op."""
		actor, target = _validate_pair(actor_id, target_id)
		if swipe_type is SwipeType.LIKE:
			removed = await self.repo.delete_like(actor, target)
		else:
			removed = await self.repo.delete_pass(actor, target)
		obs_metrics.inc_swipe(f"undo_{swipe_type.value}", "removed" if removed else "noop")
		return bool(removed)

	async def _load_pair(self, user_a: str, user_b: str) -> tuple[UserProfile, UserProfile]:
		profile_a, profile_b = await asyncio.gather(self.repo.get_profile(user_a), self.repo.get_profile(user_b))
		if profile_a is None or profile_b is None:
			raise ProfileNotFound()
		if profile_a.personality is None or profile_b.personality is None:
			raise InsufficientDataError("missing_personality")
		return profile_a, profile_b

	async def create_match(self, actor_id: str, target_id: str) -> tuple[Match, bool]:
		"""Create the match for a mutual like, or return the one a concurrent request created.

		The snapshot is computed here from freshly loaded profiles, ordered by
		the canonical pair key so both sides produce the same breakdown.
		"""
		pair = pair_key(actor_id, target_id)
		user1, user2 = await self._load_pair(*pair)
		breakdown = scoring.compatibility_breakdown(user1, user2)
		match, created = await self.repo.insert_match(pair, breakdown["overallScore"], breakdown)
		obs_metrics.inc_match("created" if created else "existing")
		if created:
			logger.info("match_created", extra={"match_id": match.id, "score": match.compatibility_score})
			actor_profile = user1 if user1.id == actor_id else user2
			await notifications.notify_match(self.repo, match, target_id, from_name=actor_profile.name)
		else:
			logger.info("match_already_exists", extra={"match_id": match.id})
		return match, created

	async def get_matches(self, user_id: Any) -> list[MatchListing]:
		"""Newest first. Profiles that are no longer discoverable leave name and age empty."""
		viewer = _normalise_id(user_id, "user_id")
		matches = await self.repo.get_matches_for_user(viewer)
		profiles = await self.repo.get_profiles([match.other_user(viewer) for match in matches])
		return [MatchListing.for_viewer(match, viewer, profiles.get(match.other_user(viewer))) for match in matches]

	async def are_matched(self, user_a: Any, user_b: Any) -> bool:
		first = _normalise_id(user_a, "user_id")
		second = _normalise_id(user_b, "other_user_id")
		if first == second:
			raise ValidationError("same_user")
		return await self.repo.get_match_for_pair(pair_key(first, second)) is not None

	async def compatibility(self, user_a: Any, user_b: Any) -> dict[str, Any]:
		"""Authoritative server-side breakdown between two users."""
		first = _normalise_id(user_a, "user_id")
		second = _normalise_id(user_b, "other_user_id")
		if first == second:
			raise ValidationError("same_user")
		profile_a, profile_b = await self._load_pair(first, second)
		return scoring.compatibility_breakdown(profile_a, profile_b)
