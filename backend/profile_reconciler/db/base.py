"""SQLAlchemy metadata registry import for Alembic."""

from profile_reconciler.models import (
    ProfileAuditLog,
    ProfileFieldValue,
    ProfileUpdateProposal,
    TransformationRule,
)
from profile_reconciler.models.base import Base

__all__ = ["Base", "ProfileAuditLog", "ProfileFieldValue", "ProfileUpdateProposal", "TransformationRule"]
