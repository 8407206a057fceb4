"""Discovery feed: candidate retrieval, hard filters, scoring and ranking."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from matchcore.domain.matching import dealbreakers, scoring
from matchcore.domain.matching.exceptions import InsufficientDataError, MatchingError, ProfileNotFound, ValidationError
from matchcore.domain.matching.models import UserProfile
from matchcore.domain.matching.repository import MatchingRepository
from matchcore.domain.matching.schemas import FeedCandidate, FeedResponse
from matchcore.infra.store import Filter, Order
from matchcore.obs import metrics as obs_metrics
from matchcore.settings import settings

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ScoredCandidate:
	profile: UserProfile
	score: scoring.CompatibilityScore
	distance: scoring.Distance

	def sort_key(self) -> tuple:
		last_active = self.profile.last_active_at.timestamp() if self.profile.last_active_at else float("-inf")
		return (-self.score.overall_score, -last_active, self.profile.id)

	def to_schema(self) -> FeedCandidate:
		return FeedCandidate(
			user_id=self.profile.id,
			name=self.profile.name,
			age=self.profile.age,
			gender=self.profile.gender,
			interests=list(self.profile.interests),
			personality_score=self.score.personality_score,
			interest_score=self.score.interest_score,
			lifestyle_score=self.score.lifestyle_score,
			overall_score=self.score.overall_score,
			reasons=list(self.score.reasons),
			distance_miles=self.distance.miles if self.distance.known else None,
			last_active_at=self.profile.last_active_at,
		)


@dataclass(slots=True)
class FeedPage:
	candidates: list[ScoredCandidate] = field(default_factory=list)
	next_offset: int = 0
	exhausted: bool = False
	exclusion_degraded: bool = False

	def to_schema(self) -> FeedResponse:
		return FeedResponse(
			items=[candidate.to_schema() for candidate in self.candidates],
			next_offset=self.next_offset,
			exhausted=self.exhausted,
		)


def rank(candidates: list[ScoredCandidate]) -> list[ScoredCandidate]:
	"""Overall score desc, then last active desc, then user id asc."""
	return sorted(candidates, key=ScoredCandidate.sort_key)


class FeedBuilder:
	def __init__(
		self,
		repo: MatchingRepository,
		*,
		age_band_years: Optional[int] = None,
		max_distance_miles: Optional[float] = None,
		max_limit: Optional[int] = None,
	) -> None:
		self.repo = repo
		self.age_band_years = settings.feed_age_band_years if age_band_years is None else age_band_years
		self.max_distance_miles = settings.feed_max_distance_miles if max_distance_miles is None else max_distance_miles
		self.max_limit = settings.feed_max_limit if max_limit is None else max_limit

	async def _exclusions(self, user_id: str) -> tuple[set[str], bool]:
		try:
			excluded = await self.repo.excluded_user_ids(user_id)
		except MatchingError as exc:
			obs_metrics.inc_feed_exclusion_degraded()
			logger.warning("feed_exclusion_degraded", extra={"reason": exc.reason})
			return {user_id}, True
		excluded.add(user_id)
		return excluded, False

	def candidate_filters(self, requester: UserProfile, excluded: set[str]) -> list[Filter]:
		return [
			Filter("onboarding_completed", "eq", True),
			Filter("gender", "in", list(requester.looking_for)),
			Filter("looking_for", "contains", [requester.gender]),
			Filter("age", "gte", requester.age - self.age_band_years),
			Filter("age", "lte", requester.age + self.age_band_years),
			Filter("id", "not_in", sorted(excluded)),
		]

	def score_candidate(self, requester: UserProfile, candidate: UserProfile) -> tuple[Optional[ScoredCandidate], str]:
		"""Score one candidate independently; returns (None, skip_reason) when it is filtered out."""
		if candidate.personality is None:
			return None, "missing_personality"
		verdict = dealbreakers.check_dealbreakers(requester, candidate)
		if not verdict.compatible:
			logger.debug("feed_dealbreaker", extra={"candidate": candidate.id, "reason": verdict.reason})
			return None, "dealbreaker"
		distance = scoring.distance_miles(requester, candidate)
		if distance.known and distance.miles > self.max_distance_miles:
			return None, "too_far"
		score = scoring.score_pair(requester, candidate)
		return ScoredCandidate(profile=candidate, score=score, distance=distance), "kept"

	async def build(self, user_id: str, *, limit: Optional[int] = None, offset: int = 0) -> FeedPage:
		limit = settings.feed_default_limit if limit is None else limit
		if limit < 1:
			raise ValidationError("invalid_limit")
		if offset < 0:
			raise ValidationError("invalid_offset")
		limit = min(limit, self.max_limit)

		started = time.perf_counter()
		try:
			requester, (excluded, degraded) = await asyncio.gather(
				self.repo.get_profile(user_id),
				self._exclusions(user_id),
			)
			if requester is None:
				raise ProfileNotFound()
			if not requester.onboarding_completed:
				raise InsufficientDataError("onboarding_incomplete")
			if requester.personality is None:
				raise InsufficientDataError("missing_personality")

			candidates = await self.repo.query_profiles(
				self.candidate_filters(requester, excluded),
				order=[Order("last_active_at", descending=True), Order("id")],
				limit=limit,
				offset=offset,
			)
			obs_metrics.inc_feed_candidates("fetched", len(candidates))

			kept: list[ScoredCandidate] = []
			for candidate in candidates:
				if candidate.id in excluded:
					continue
				scored, stage = self.score_candidate(requester, candidate)
				obs_metrics.inc_feed_candidates(stage)
				if scored is not None:
					kept.append(scored)
		except MatchingError as exc:
			obs_metrics.record_feed_build(exc.reason, duration_seconds=time.perf_counter() - started)
			raise

		page = FeedPage(
			candidates=rank(kept),
			next_offset=offset + limit,
			exhausted=len(candidates) < limit,
			exclusion_degraded=degraded,
		)
		elapsed = time.perf_counter() - started
		obs_metrics.record_feed_build("degraded" if degraded else "ok", duration_seconds=elapsed)
		logger.info(
			"feed_built",
			extra={
				"fetched": len(candidates),
				"kept": len(page.candidates),
				"offset": offset,
				"limit": limit,
				"duration_ms": round(elapsed * 1000, 1),
			},
		)
		return page
