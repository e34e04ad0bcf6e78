"""Human review queue and its expiry sweeper."""

from gatekeeper.review.queue import ReviewQueue, review_prompt_for
from gatekeeper.review.sweeper import ExpirySweeper

__all__ = ["ExpirySweeper", "ReviewQueue", "review_prompt_for"]
