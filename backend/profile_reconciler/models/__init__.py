"""ORM models package exports."""

from profile_reconciler.models.profile_audit_log import ProfileAuditLog
from profile_reconciler.models.profile_field_value import ProfileFieldValue
from profile_reconciler.models.profile_update_proposal import ProfileUpdateProposal
from profile_reconciler.models.transformation_rule import TransformationRule

__all__ = [
    "ProfileAuditLog",
    "ProfileFieldValue",
    "ProfileUpdateProposal",
    "TransformationRule",
]
