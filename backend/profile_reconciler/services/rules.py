"""Transformation rule configuration services."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from profile_reconciler.models.transformation_rule import TransformationRule
from profile_reconciler.schemas.rules import RuleCreate, RuleUpdate


def create_rule(db: Session, payload: RuleCreate) -> TransformationRule:
    """Persist one transformation rule."""

    rule = TransformationRule(
        question_id=payload.question_id.strip(),
        question_text=payload.question_text,
        target_table=_clean(payload.target_table),
        target_field=_clean(payload.target_field),
        strategy=payload.strategy.value,
        strategy_config_json=dict(payload.strategy_config_json),
        validation_rules_json=dict(payload.validation_rules_json),
        requires_approval=payload.requires_approval,
        priority=payload.priority,
        conflict_resolution=payload.conflict_resolution.value,
        is_active=payload.is_active,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def get_rule(db: Session, rule_id: int) -> TransformationRule | None:
    return db.scalar(select(TransformationRule).where(TransformationRule.id == rule_id))


def list_rules(db: Session, question_id: str | None = None) -> list[TransformationRule]:
    """Return rules ordered by question, then priority (highest first)."""

    stmt = select(TransformationRule)
    if question_id is not None:
        stmt = stmt.where(TransformationRule.question_id == question_id)
    stmt = stmt.order_by(
        TransformationRule.question_id.asc(),
        TransformationRule.priority.desc(),
        TransformationRule.id.asc(),
    )
    return list(db.scalars(stmt))


def active_rules_for_question(db: Session, question_id: str) -> list[TransformationRule]:
    """Return the active rules for one question, highest priority first."""

    return list(
        db.scalars(
            select(TransformationRule)
            .where(
                TransformationRule.question_id == question_id,
                TransformationRule.is_active.is_(True),
            )
            .order_by(TransformationRule.priority.desc(), TransformationRule.id.asc())
        )
    )


def update_rule(db: Session, rule_id: int, payload: RuleUpdate) -> TransformationRule | None:
    """Update the provided fields of one rule."""

    rule = get_rule(db, rule_id)
    if rule is None:
        return None
    for name in payload.model_fields_set:
        value = getattr(payload, name)
        if name in {"strategy", "conflict_resolution"} and value is not None:
            value = value.value
        elif name in {"target_table", "target_field"}:
            value = _clean(value)
        elif name in {"strategy_config_json", "validation_rules_json"}:
            value = dict(value or {})
        elif value is None:
            continue
        setattr(rule, name, value)
    db.commit()
    db.refresh(rule)
    return rule


def delete_rule(db: Session, rule_id: int) -> bool:
    rule = get_rule(db, rule_id)
    if rule is None:
        return False
    db.delete(rule)
    db.commit()
    return True


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None
