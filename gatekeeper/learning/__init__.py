"""Feedback learning and project sessions."""

from gatekeeper.learning.feedback import FeedbackLearner, learned_adjustment

__all__ = ["FeedbackLearner", "learned_adjustment"]
