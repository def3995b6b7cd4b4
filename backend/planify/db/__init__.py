"""Database utilities and models."""

from planify.db.base import Base
from planify.db import models  # noqa: F401  (imported for side effects)

__all__ = ["Base"]
