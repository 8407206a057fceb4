"""Boundary repository mapping matching reads and writes onto the persistence client.

Store failures arrive already classified in ``StoreResult.error``; this module
only translates them into domain exceptions.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from matchcore.domain.matching.exceptions import ConflictError, NotificationError, StoreFailure, from_store_error
from matchcore.domain.matching.models import (
	LIKES_TABLE,
	MATCHES_TABLE,
	NOTIFICATIONS_TABLE,
	PASSES_TABLE,
	PROFILES_VIEW,
	Match,
	Notification,
	UserProfile,
	pair_key,
	unique_ids,
)
from matchcore.infra.auth import SessionContext
from matchcore.infra.store import Filter, Order, PersistenceClient, StoreResult, get_client

logger = logging.getLogger(__name__)


def _unwrap(result: StoreResult[Any], operation: str) -> Any:
	if result.error is not None:
		raise from_store_error(result.error, operation=operation)
	return result.data


class MatchingRepository:
	def __init__(self, client: PersistenceClient) -> None:
		self.client = client

	@classmethod
	def for_session(cls, session: Optional[SessionContext] = None) -> "MatchingRepository":
		"""Bind the shared client to the caller's in-memory access token."""
		token = session.access_token if session is not None else None
		return cls(get_client().with_session(token))

	# Profiles ---------------------------------------------------------------

	async def get_profile(self, user_id: str) -> Optional[UserProfile]:
		result = await self.client.select(PROFILES_VIEW, filters=[Filter("id", "eq", user_id)], single=True)
		record = _unwrap(result, "get_profile")
		return UserProfile.from_record(record) if record else None

	async def get_profiles(self, user_ids: Sequence[str]) -> dict[str, UserProfile]:
		ids = sorted(set(user_ids))
		if not ids:
			return {}
		result = await self.client.select(PROFILES_VIEW, filters=[Filter("id", "in", ids)])
		rows = _unwrap(result, "get_profiles") or []
		profiles = [UserProfile.from_record(row) for row in rows]
		return {profile.id: profile for profile in profiles}

	async def query_profiles(
		self,
		filters: Sequence[Filter],
		order: Sequence[Order] = (),
		limit: Optional[int] = None,
		offset: Optional[int] = None,
	) -> list[UserProfile]:
		result = await self.client.select(PROFILES_VIEW, filters=filters, order=order, limit=limit, offset=offset)
		rows = _unwrap(result, "query_profiles") or []
		return [UserProfile.from_record(row) for row in rows]

	# Swipes -----------------------------------------------------------------

	async def _insert_swipe(self, table: str, record: dict[str, str], operation: str) -> bool:
		"""Insert a swipe row; returns False when it already existed."""
		try:
			_unwrap(await self.client.insert(table, record), operation)
		except ConflictError:
			logger.info("swipe_duplicate", extra={"table": table})
			return False
		return True

	async def insert_like(self, actor_id: str, target_id: str) -> bool:
		return await self._insert_swipe(LIKES_TABLE, {"liker_id": actor_id, "liked_id": target_id}, "insert_like")

	async def insert_pass(self, actor_id: str, target_id: str) -> bool:
		return await self._insert_swipe(PASSES_TABLE, {"passer_id": actor_id, "passed_id": target_id}, "insert_pass")

	async def delete_like(self, actor_id: str, target_id: str) -> int:
		result = await self.client.delete(
			LIKES_TABLE,
			filters=[Filter("liker_id", "eq", actor_id), Filter("liked_id", "eq", target_id)],
		)
		return len(_unwrap(result, "delete_like") or [])

	async def delete_pass(self, actor_id: str, target_id: str) -> int:
		result = await self.client.delete(
			PASSES_TABLE,
			filters=[Filter("passer_id", "eq", actor_id), Filter("passed_id", "eq", target_id)],
		)
		return len(_unwrap(result, "delete_pass") or [])

	async def exists_mutual_like(self, user_a: str, user_b: str) -> bool:
		result = await self.client.rpc("check_mutual_like", {"user1_id": user_a, "user2_id": user_b})
		return bool(_unwrap(result, "check_mutual_like"))

	async def excluded_user_ids(self, user_id: str) -> set[str]:
		result = await self.client.rpc("excluded_user_ids", {"target_user_id": user_id}, set_returning=True)
		return unique_ids(_unwrap(result, "excluded_user_ids") or [])

	# Matches ----------------------------------------------------------------

	async def get_match_for_pair(self, pair: tuple[str, str]) -> Optional[Match]:
		user1, user2 = pair
		result = await self.client.select(
			MATCHES_TABLE,
			filters=[Filter("user1_id", "eq", user1), Filter("user2_id", "eq", user2)],
			single=True,
		)
		record = _unwrap(result, "get_match")
		return Match.from_record(record) if record else None

	async def insert_match(self, pair: tuple[str, str], score: int, breakdown: dict[str, Any]) -> tuple[Match, bool]:
		"""Insert the match for ``pair``; on a uniqueness conflict return the existing row.

		Returns ``(match, created)``.
		"""
		user1, user2 = pair_key(*pair)
		record = {
			"user1_id": user1,
			"user2_id": user2,
			"compatibility_score": score,
			"compatibility_breakdown": breakdown,
			"blur_points": 0,
			"is_unblurred": False,
			"matched_at": datetime.now(timezone.utc),
		}
		try:
			rows = _unwrap(await self.client.insert(MATCHES_TABLE, record), "insert_match")
		except ConflictError:
			existing = await self.get_match_for_pair((user1, user2))
			if existing is None:
				raise StoreFailure("match_conflict_unresolved")
			return existing, False
		if not rows:
			raise StoreFailure("insert_match_empty")
		return Match.from_record(rows[0]), True

	async def get_matches_for_user(self, user_id: str) -> list[Match]:
		order = [Order("matched_at", descending=True)]
		left, right = await asyncio.gather(
			self.client.select(MATCHES_TABLE, filters=[Filter("user1_id", "eq", user_id)], order=order),
			self.client.select(MATCHES_TABLE, filters=[Filter("user2_id", "eq", user_id)], order=order),
		)
		rows = list(_unwrap(left, "get_matches") or []) + list(_unwrap(right, "get_matches") or [])
		matches = [Match.from_record(row) for row in rows]
		floor = datetime.min.replace(tzinfo=timezone.utc)
		matches.sort(key=lambda m: (m.matched_at or floor, m.id), reverse=True)
		return matches

	# Notifications ----------------------------------------------------------

	async def insert_notification(self, notification: Notification) -> None:
		result = await self.client.insert(NOTIFICATIONS_TABLE, notification.to_record())
		if result.error is not None:
			raise NotificationError(f"{notification.type}_not_stored") from result.error
