"""
Model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

from review_pipeline.modules.reviews.models import ReviewRun  # noqa: F401
