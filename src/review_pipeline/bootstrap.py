from __future__ import annotations

import review_pipeline.models  # noqa: F401
from review_pipeline.core.config import settings
from review_pipeline.core.db import engine
from review_pipeline.core.models import Base


def bootstrap() -> None:
    if settings.environment in {"dev", "test"} and str(settings.database_url).startswith("sqlite"):
        Base.metadata.create_all(engine)
