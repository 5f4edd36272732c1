"""User feedback on stored insights.

Only the feedback field changes, and only on an insight the owner has.

Usage:
    from clientlens.engine.feedback import submit_feedback

    await submit_feedback(store, "owner-1", 42, "positive")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from clientlens.core.errors import FeedbackRejectedError, FeedbackValidationError
from clientlens.core.logging import get_logger

if TYPE_CHECKING:
    from clientlens.db.store import DatabaseStore

logger = get_logger(__name__)

VALID_FEEDBACK = frozenset({"positive", "negative"})


async def submit_feedback(
    store: DatabaseStore,
    owner_id: str,
    insight_id: int,
    feedback: str,
) -> None:
    """Record the owner's feedback on one insight.

    Args:
        store: Database store
        owner_id: Owner submitting the feedback
        insight_id: Insight the feedback is for
        feedback: 'positive' or 'negative'

    Raises:
        FeedbackValidationError: feedback is not an accepted value
        FeedbackRejectedError: the owner has no insight with this id
        DatabaseError: the update failed
    """
    if feedback not in VALID_FEEDBACK:
        raise FeedbackValidationError(
            f"Invalid feedback '{feedback}'. Use one of: {', '.join(sorted(VALID_FEEDBACK))}."
        )

    updated = await store.set_insight_feedback(owner_id, insight_id, feedback)
    if not updated:
        logger.warning("feedback_rejected", insight_id=insight_id, owner_id=owner_id)
        raise FeedbackRejectedError(
            f"Insight {insight_id} not found for owner '{owner_id}'.",
            insight_id=insight_id,
        )

    logger.info("feedback_recorded", insight_id=insight_id, feedback=feedback)
