"""Best-effort match notifications."""

from __future__ import annotations

import logging
from typing import Optional

from matchcore.domain.matching.exceptions import NotificationError
from matchcore.domain.matching.models import Match, Notification
from matchcore.domain.matching.repository import MatchingRepository
from matchcore.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

NEW_MATCH = "new_match"


def build_match_notification(match: Match, recipient_id: str, *, from_name: Optional[str] = None) -> Notification:
	other_id = match.other_user(recipient_id)
	body = f"You and {from_name} liked each other." if from_name else "Someone you liked likes you back."
	return Notification(
		user_id=recipient_id,
		type=NEW_MATCH,
		title="It's a match!",
		body=body,
		data={
			"match_id": match.id,
			"other_user_id": other_id,
			"compatibility_score": match.compatibility_score,
		},
	)


async def notify(repo: MatchingRepository, notification: Notification) -> bool:
	"""Write the notification. Returns False when delivery failed; the failure is only logged."""
	try:
		await repo.insert_notification(notification)
	except NotificationError as exc:
		obs_metrics.inc_notification_failure(notification.type)
		logger.warning(
			"notification_failed",
			extra={
				"notification_type": notification.type,
				"recipient": notification.user_id,
				"reason": exc.reason,
				"error": str(exc.__cause__ or exc),
			},
		)
		return False
	return True


async def notify_match(repo: MatchingRepository, match: Match, recipient_id: str, *, from_name: Optional[str] = None) -> bool:
	return await notify(repo, build_match_notification(match, recipient_id, from_name=from_name))
