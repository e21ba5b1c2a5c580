"""Seed demo transformation rules and run one self-assessment submission.

Usage (from repository root):
    python backend/scripts/seed_demo.py

Usage (from backend directory):
    python scripts/seed_demo.py
    # or
    python -m scripts.seed_demo
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sqlalchemy import delete

# Make `profile_reconciler` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from profile_reconciler.db.session import SessionLocal
from profile_reconciler.models.enums import ConflictResolutionPolicy, TransformationStrategyName
from profile_reconciler.models.profile_audit_log import ProfileAuditLog
from profile_reconciler.models.profile_field_value import ProfileFieldValue
from profile_reconciler.models.profile_update_proposal import ProfileUpdateProposal
from profile_reconciler.models.transformation_rule import TransformationRule
from profile_reconciler.schemas.rules import RuleCreate
from profile_reconciler.services.reconciliation import build_reconciliation_service
from profile_reconciler.services.rules import create_rule
from profile_reconciler.transformation.types import RawSubmission

DEFAULT_SUBJECT_ID = "student-demo-001"
DEFAULT_SOURCE_ID = "self-assessment-demo-001"


def build_demo_rules() -> list[RuleCreate]:
    """Return one rule per built-in strategy."""

    return [
        RuleCreate(
            question_id="q_grade_level",
            question_text="Which grade are you in?",
            target_table="students",
            target_field="grade_level",
            strategy=TransformationStrategyName.DIRECT,
            strategy_config_json={"transformType": "NUMBER"},
            validation_rules_json={"min": 1, "max": 12},
            requires_approval=False,
        ),
        RuleCreate(
            question_id="q_favorite_subject",
            question_text="What is your favourite subject?",
            target_table="standardized_academic_profile",
            target_field="favorite_subject",
            strategy=TransformationStrategyName.AI_STANDARDIZE,
            strategy_config_json={"standardValues": ["Mathematics", "Physics", "Literature", "History"]},
        ),
        RuleCreate(
            question_id="q_motivation",
            question_text="How motivated do you feel at school (1-5)?",
            target_table="standardized_social_emotional_profile",
            target_field="motivation_score",
            strategy=TransformationStrategyName.SCALE_CONVERT,
            strategy_config_json={"sourceScale": {"min": 1, "max": 5}, "targetScale": {"min": 0, "max": 100}},
            conflict_resolution=ConflictResolutionPolicy.MANUAL_REVIEW,
        ),
        RuleCreate(
            question_id="q_hobbies",
            question_text="List your hobbies.",
            target_table="standardized_talents_interests_profile",
            target_field="hobbies",
            strategy=TransformationStrategyName.ARRAY_MERGE,
            strategy_config_json={"separator": ",", "mergeStrategy": "UNIQUE_APPEND"},
            conflict_resolution=ConflictResolutionPolicy.MERGE,
        ),
        RuleCreate(
            question_id="q_about_me",
            question_text="Tell us about yourself.",
            strategy=TransformationStrategyName.MULTIPLE_FIELDS,
            strategy_config_json={
                "mappings": [
                    {"field": "self_summary", "extractFrom": "full_text"},
                    {
                        "field": "interest_category",
                        "table": "standardized_talents_interests_profile",
                        "extractFrom": "full_text",
                        "parseWithAI": True,
                    },
                ]
            },
        ),
    ]


def build_demo_answers() -> dict[str, object]:
    return {
        "q_grade_level": "9",
        "q_favorite_subject": "mathematics",
        "q_motivation": 4,
        "q_hobbies": "chess, guitar , swimming",
        "q_about_me": "I like building robots and reading science fiction.",
    }


def reset_demo(db, subject_id: str) -> None:
    """Remove existing demo rules and records for the subject."""

    question_ids = [rule.question_id for rule in build_demo_rules()]
    db.execute(delete(TransformationRule).where(TransformationRule.question_id.in_(question_ids)))
    db.execute(delete(ProfileUpdateProposal).where(ProfileUpdateProposal.subject_id == subject_id))
    db.execute(delete(ProfileAuditLog).where(ProfileAuditLog.subject_id == subject_id))
    db.execute(delete(ProfileFieldValue).where(ProfileFieldValue.subject_id == subject_id))
    db.commit()


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed demo rules and submit a demo self-assessment.")
    parser.add_argument(
        "--subject-id",
        default=DEFAULT_SUBJECT_ID,
        help=f"Subject ID to seed (default: {DEFAULT_SUBJECT_ID})",
    )
    parser.add_argument(
        "--no-reset",
        action="store_true",
        help="Do not delete existing demo rules and subject records before seeding.",
    )
    return parser.parse_args()


def main() -> None:
    """Seed demo data and print a short summary."""

    args = parse_args()
    subject_id: str = args.subject_id

    with SessionLocal() as db:
        if not args.no_reset:
            reset_demo(db, subject_id)
        rules = [create_rule(db, payload) for payload in build_demo_rules()]
        service = build_reconciliation_service(db)
        result = service.submit(
            RawSubmission(
                subject_id=subject_id,
                source_id=DEFAULT_SOURCE_ID,
                source_type="self_assessment",
                answers=build_demo_answers(),
            )
        )

    print("Seed complete")
    print(f"subject_id={subject_id}")
    print(f"rules_created={len(rules)}")
    print(f"proposals_created={len(result.drafts)}")
    print(f"auto_applied={sum(1 for draft in result.drafts if draft.status == 'AUTO_APPLIED')}")
    print(f"skipped_rules={len(result.skipped_rules)}")
    print()
    print("Inspect:")
    print(f"  GET /proposals/pending?subject_id={subject_id}")
    print("  GET /proposals/stats")


if __name__ == "__main__":
    main()
