"""Submission intake and the reviewer workflow over profile update proposals."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from functools import partial
from time import perf_counter
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from profile_reconciler.config import Settings, get_settings
from profile_reconciler.errors import ConfigurationError, ReconciliationError
from profile_reconciler.models.enums import AuditAction, ProposalStatus, UpdateType
from profile_reconciler.models.profile_update_proposal import ProfileUpdateProposal
from profile_reconciler.models.transformation_rule import TransformationRule
from profile_reconciler.services.application import ApplicationExecutor
from profile_reconciler.services.profile_store import ProfileStore, SqlProfileStore
from profile_reconciler.services.proposal_store import PendingBatch, ProposalStats, ProposalStore, utcnow
from profile_reconciler.services.rules import active_rules_for_question
from profile_reconciler.transformation.registry import TransformationRegistry
from profile_reconciler.transformation.standardizer import LLMValueStandardizer
from profile_reconciler.transformation.types import ProposalDraft, RawSubmission, TargetLocator
from profile_reconciler.transformation.values import (
    ProposedValue,
    coerce_to_kind,
    deserialize_value,
    from_python,
    is_empty_answer,
    serialize_value,
)
from profile_reconciler.validation.engine import DataConflict, ValidationEngine, ValidationResult
from profile_reconciler.validation.judgement import OpenAIChatCompletionsJudge

logger = logging.getLogger(__name__)

SYSTEM_REVIEWER = "system"

_SELF_REPORTED_SOURCES = {"self_assessment", "survey_response"}
_MANUAL_SOURCES = {"manual_input"}


@dataclass(slots=True)
class DraftOutcome:
    proposal_id: int
    status: str
    target_locator: str
    proposed_value: str
    confidence: float
    is_valid: bool
    degraded: bool
    conflicts: list[DataConflict] = field(default_factory=list)
    note: str | None = None


@dataclass(slots=True)
class SkippedRule:
    rule_id: int | None
    question_id: str
    error: str


@dataclass(slots=True)
class SubmissionResult:
    subject_id: str
    source_id: str
    drafts: list[DraftOutcome] = field(default_factory=list)
    skipped_rules: list[SkippedRule] = field(default_factory=list)


@dataclass(slots=True)
class ApprovalError:
    proposal_id: int
    error: str


@dataclass(slots=True)
class ApprovalResult:
    applied_count: int = 0
    updated_fields: list[str] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    errors: list[ApprovalError] = field(default_factory=list)


@dataclass(slots=True)
class ReviewOutcome:
    proposal_id: int
    status: str
    skipped: bool
    applied: bool


def update_type_for_source(source_type: str) -> str:
    if source_type in _SELF_REPORTED_SOURCES:
        return UpdateType.SELF_REPORTED.value
    if source_type in _MANUAL_SOURCES:
        return UpdateType.MANUAL.value
    return UpdateType.AI_SUGGESTED.value


def fold_confidence(transform_confidence: float, validation: ValidationResult) -> float:
    """Combine transformation confidence (0..1) with validation confidence (0..100)."""

    return max(0.0, min(transform_confidence, validation.confidence / 100.0))


class ReconciliationService:
    """Turns raw submissions into proposals and runs the review state machine.

    Every proposal starts PENDING (or AUTO_APPLIED when its rule waives
    review) and leaves PENDING at most once, through the store's conditional
    transition. Approval applies the value first and flips the status second,
    both inside one per-proposal transaction.
    """

    def __init__(
        self,
        db: Session,
        *,
        registry: TransformationRegistry,
        validator: ValidationEngine,
        store: ProposalStore,
        executor: ApplicationExecutor,
        rules_lookup: Callable[[str], list[TransformationRule]] | None = None,
        proposal_ttl_hours: int = 720,
    ) -> None:
        self._db = db
        self._registry = registry
        self._validator = validator
        self._store = store
        self._executor = executor
        self._rules_lookup = rules_lookup or partial(active_rules_for_question, db)
        self._proposal_ttl = timedelta(hours=proposal_ttl_hours)

    @property
    def store(self) -> ProposalStore:
        return self._store

    @property
    def profile_store(self) -> ProfileStore:
        return self._executor.store

    def submit(self, submission: RawSubmission) -> SubmissionResult:
        """Transform, validate and persist every answer of one submission.

        A rule that cannot be used or an answer that cannot be converted is
        reported in ``skipped_rules``; the remaining rules still run.
        """

        total_started = perf_counter()
        update_type = submission.update_type or update_type_for_source(submission.source_type)
        snapshot = self.profile_store.snapshot(submission.subject_id)
        result = SubmissionResult(subject_id=submission.subject_id, source_id=submission.source_id)

        for question_id, answer in submission.answers.items():
            if is_empty_answer(answer):
                continue
            for rule in self._rules_lookup(question_id):
                try:
                    drafts = self._registry.transform(
                        rule,
                        answer,
                        submission.subject_id,
                        submission.source_id,
                        source_type=submission.source_type,
                        update_type=update_type,
                        current_value=_snapshot_value(snapshot, rule),
                    )
                except ReconciliationError as exc:
                    logger.warning(
                        "reconciliation.rule_skipped rule_id=%s question_id=%s subject_id=%s error=%s",
                        rule.id,
                        question_id,
                        submission.subject_id,
                        exc,
                    )
                    result.skipped_rules.append(SkippedRule(rule_id=rule.id, question_id=question_id, error=str(exc)))
                    continue
                for draft in drafts:
                    result.drafts.append(self._persist_draft(draft, snapshot))

        logger.info(
            "reconciliation.submit_timing subject_id=%s source_id=%s drafts=%d skipped_rules=%d total_ms=%.2f",
            submission.subject_id,
            submission.source_id,
            len(result.drafts),
            len(result.skipped_rules),
            (perf_counter() - total_started) * 1000.0,
        )
        return result

    def approve(
        self,
        ids: Iterable[int],
        reviewed_by: str,
        notes: str | None = None,
        *,
        feedback_rating: int | None = None,
        feedback_notes: str | None = None,
    ) -> ApprovalResult:
        """Apply and approve each PENDING proposal, one transaction per id.

        Ids are de-duplicated and processed in the given order. Ids that are
        missing, no longer PENDING or lost to a concurrent reviewer are
        reported as skipped. A failing id is rolled back, stays PENDING and
        is reported with its error while the rest of the batch continues.
        """

        result = ApprovalResult()
        for proposal_id in dict.fromkeys(ids):
            proposal = self._store.get(proposal_id)
            if proposal is None or proposal.status != ProposalStatus.PENDING.value:
                result.skipped.append(proposal_id)
                continue
            locator = TargetLocator(table=proposal.target_table, field=proposal.target_field)
            subject_id = proposal.subject_id
            try:
                change = self._executor.apply(
                    locator,
                    proposal.proposed_value,
                    subject_id,
                    proposal_id=proposal_id,
                    value_kind=proposal.value_kind,
                )
                affected = self._store.transition(
                    proposal_id,
                    ProposalStatus.APPROVED,
                    reviewed_by=reviewed_by,
                    review_notes=notes,
                    feedback_rating=feedback_rating,
                    feedback_notes=feedback_notes,
                )
                if affected == 0:
                    self._db.rollback()
                    logger.info("reconciliation.approve_lost_race proposal_id=%s", proposal_id)
                    result.skipped.append(proposal_id)
                    continue
                self._db.commit()
            except (ReconciliationError, SQLAlchemyError) as exc:
                self._db.rollback()
                logger.warning(
                    "reconciliation.approve_failed proposal_id=%s locator=%s error=%s",
                    proposal_id,
                    locator.path,
                    exc,
                )
                result.errors.append(ApprovalError(proposal_id=proposal_id, error=str(exc)))
                continue

            result.applied_count += 1
            result.updated_fields.append(locator.path)
            self._executor.append_audit(
                proposal_id=proposal_id,
                subject_id=subject_id,
                action=AuditAction.PROFILE_UPDATED,
                performed_by=reviewed_by,
                locator=locator,
                previous_value=change.previous_value,
                new_value=change.new_value,
                details={"notes": notes} if notes else None,
            )

        logger.info(
            "reconciliation.approve_result applied=%d skipped=%d errors=%d reviewed_by=%s",
            result.applied_count,
            len(result.skipped),
            len(result.errors),
            reviewed_by,
        )
        return result

    def reject(
        self,
        proposal_id: int,
        reviewed_by: str,
        reason: str,
        *,
        feedback_rating: int | None = None,
        feedback_notes: str | None = None,
    ) -> ReviewOutcome:
        if not reason or not reason.strip():
            raise ValueError("A rejection reason is required.")
        proposal = self._store.require(proposal_id)
        if proposal.status != ProposalStatus.PENDING.value:
            return ReviewOutcome(proposal_id=proposal_id, status=proposal.status, skipped=True, applied=False)

        locator = TargetLocator(table=proposal.target_table, field=proposal.target_field)
        subject_id, proposed_value = proposal.subject_id, proposal.proposed_value
        affected = self._store.transition(
            proposal_id,
            ProposalStatus.REJECTED,
            reviewed_by=reviewed_by,
            review_notes=reason.strip(),
            feedback_rating=feedback_rating,
            feedback_notes=feedback_notes,
        )
        if affected == 0:
            self._db.rollback()
            return self._skipped(proposal_id)
        self._db.commit()
        self._executor.append_audit(
            proposal_id=proposal_id,
            subject_id=subject_id,
            action=AuditAction.REJECTED,
            performed_by=reviewed_by,
            locator=locator,
            previous_value=None,
            new_value=proposed_value,
            details={"reason": reason.strip()},
        )
        return ReviewOutcome(proposal_id=proposal_id, status=ProposalStatus.REJECTED.value, skipped=False, applied=False)

    def modify(
        self,
        proposal_id: int,
        reviewed_by: str,
        new_value: Any,
        notes: str | None = None,
        *,
        feedback_rating: int | None = None,
        feedback_notes: str | None = None,
    ) -> ReviewOutcome:
        """Apply the reviewer's value instead of the proposed one and mark the proposal MODIFIED.

        Configuration and store errors are raised to the caller after the
        transaction is rolled back; the proposal then stays PENDING.
        """

        if is_empty_answer(new_value):
            raise ValueError("A replacement value is required.")
        proposal = self._store.require(proposal_id)
        if proposal.status != ProposalStatus.PENDING.value:
            return ReviewOutcome(proposal_id=proposal_id, status=proposal.status, skipped=True, applied=False)

        locator = TargetLocator(table=proposal.target_table, field=proposal.target_field)
        subject_id, original_value = proposal.subject_id, proposal.proposed_value
        typed = _coerce_reviewer_value(new_value, proposal.value_kind)
        try:
            change = self._executor.apply(locator, typed, subject_id, proposal_id=proposal_id)
            affected = self._store.transition(
                proposal_id,
                ProposalStatus.MODIFIED,
                reviewed_by=reviewed_by,
                review_notes=notes,
                proposed_value=change.new_value,
                value_kind=typed.kind,
                feedback_rating=feedback_rating,
                feedback_notes=feedback_notes,
            )
            if affected == 0:
                self._db.rollback()
                return self._skipped(proposal_id)
            self._db.commit()
        except (ReconciliationError, SQLAlchemyError):
            self._db.rollback()
            logger.exception("reconciliation.modify_failed proposal_id=%s locator=%s", proposal_id, locator.path)
            raise

        self._executor.append_audit(
            proposal_id=proposal_id,
            subject_id=subject_id,
            action=AuditAction.MODIFIED,
            performed_by=reviewed_by,
            locator=locator,
            previous_value=change.previous_value,
            new_value=change.new_value,
            details={"original_value": original_value, "notes": notes},
        )
        return ReviewOutcome(proposal_id=proposal_id, status=ProposalStatus.MODIFIED.value, skipped=False, applied=True)

    def bulk_approve(
        self,
        subject_id: str,
        reviewed_by: str,
        *,
        source_id: str | None = None,
        exclude_ids: Iterable[int] | None = None,
        notes: str | None = None,
    ) -> ApprovalResult:
        """Approve every PENDING proposal of a subject, optionally for one submission only."""

        excluded = set(exclude_ids or ())
        candidates = [
            proposal.id
            for proposal in self._store.list_by_subject(
                subject_id,
                status=ProposalStatus.PENDING.value,
                source_id=source_id,
            )
            if proposal.id not in excluded
        ]
        return self.approve(candidates, reviewed_by, notes)

    def expire_stale(self, now: datetime | None = None) -> int:
        expired = self._store.expire_stale(now)
        self._db.commit()
        if expired:
            logger.info("reconciliation.expired_proposals count=%d", expired)
        return expired

    def list_pending(self, *, subject_id: str | None = None, sort_by: str = "date") -> list[PendingBatch]:
        return self._store.group_pending(subject_id=subject_id, sort_by=sort_by)

    def get_stats(self) -> ProposalStats:
        return self._store.stats()

    def _persist_draft(self, draft: ProposalDraft, snapshot: dict[str, str | None]) -> DraftOutcome:
        validation = self._validator.validate(draft, snapshot)
        conflicts = list(validation.conflicts)
        for peer in self._store.list_pending_for_locator(draft.subject_id, draft.locator.table, draft.locator.field):
            conflicts.extend(
                self._validator.detect_conflicts(
                    draft.locator,
                    draft.value,
                    deserialize_value(peer.proposed_value, peer.value_kind),
                    policy=draft.conflict_resolution,
                    conflicting_proposal_id=peer.id,
                )
            )

        note: str | None = None
        if not draft.requires_approval:
            if validation.is_valid and not conflicts:
                applied = self._auto_apply(draft, validation, snapshot)
                if applied is not None:
                    return applied
                note = "Auto-apply failed; held for review."
            else:
                note = "Rule waives review but the value has conflicts or failed validation; held for review."

        proposal = self._build_proposal(draft, validation, snapshot, conflicts, ProposalStatus.PENDING)
        if note:
            proposal.reasoning = f"{proposal.reasoning}\n{note}"
        try:
            self._store.create(proposal)
            for conflict in conflicts:
                if conflict.conflicting_proposal_id is None:
                    continue
                self._store.add_conflict_reference(
                    conflict.conflicting_proposal_id,
                    DataConflict(
                        target_locator=conflict.target_locator,
                        existing_value=conflict.new_value,
                        new_value=conflict.existing_value or "",
                        severity=conflict.severity,
                        resolution_suggestion=conflict.resolution_suggestion,
                        conflicting_proposal_id=proposal.id,
                    ).to_json(),
                )
            self._db.commit()
        except SQLAlchemyError:
            self._db.rollback()
            logger.exception(
                "reconciliation.persist_failed subject_id=%s locator=%s",
                draft.subject_id,
                draft.locator.path,
            )
            raise
        return _outcome(proposal, validation, conflicts, note)

    def _auto_apply(
        self,
        draft: ProposalDraft,
        validation: ValidationResult,
        snapshot: dict[str, str | None],
    ) -> DraftOutcome | None:
        proposal = self._build_proposal(draft, validation, snapshot, [], ProposalStatus.AUTO_APPLIED)
        proposal.reviewed_by = SYSTEM_REVIEWER
        proposal.reviewed_at = utcnow()
        try:
            self._store.create(proposal)
            change = self._executor.apply(draft.locator, draft.value, draft.subject_id, proposal_id=proposal.id)
            self._db.commit()
        except (ReconciliationError, SQLAlchemyError) as exc:
            self._db.rollback()
            logger.warning(
                "reconciliation.auto_apply_failed subject_id=%s locator=%s error=%s",
                draft.subject_id,
                draft.locator.path,
                exc,
            )
            return None
        snapshot[draft.locator.path] = change.new_value
        self._executor.append_audit(
            proposal_id=proposal.id,
            subject_id=draft.subject_id,
            action=AuditAction.AUTO_APPLIED,
            performed_by=SYSTEM_REVIEWER,
            locator=draft.locator,
            previous_value=change.previous_value,
            new_value=change.new_value,
            details={"rule_id": draft.rule_id, "source_id": draft.source_id},
        )
        return _outcome(proposal, validation, [], None)

    def _build_proposal(
        self,
        draft: ProposalDraft,
        validation: ValidationResult,
        snapshot: dict[str, str | None],
        conflicts: list[DataConflict],
        status: ProposalStatus,
    ) -> ProfileUpdateProposal:
        now = utcnow()
        return ProfileUpdateProposal(
            subject_id=draft.subject_id,
            source_id=draft.source_id,
            source_type=draft.source_type,
            update_type=draft.update_type,
            rule_id=draft.rule_id,
            question_id=draft.question_id,
            target_table=draft.locator.table,
            target_field=draft.locator.field,
            current_value=snapshot.get(draft.locator.path),
            proposed_value=serialize_value(draft.value),
            value_kind=draft.value.kind,
            reasoning=f"{draft.reasoning}\n{validation.reasoning}",
            confidence=fold_confidence(draft.confidence, validation),
            priority=draft.priority,
            suggested_domains_json=list(validation.suggested_domains),
            conflicts_json=[conflict.to_json() for conflict in conflicts],
            status=status.value,
            auto_apply_after=(
                now + timedelta(hours=draft.auto_apply_after_hours) if draft.auto_apply_after_hours else None
            ),
            expires_at=now + self._proposal_ttl,
        )

    def _skipped(self, proposal_id: int) -> ReviewOutcome:
        proposal = self._store.require(proposal_id)
        return ReviewOutcome(proposal_id=proposal_id, status=proposal.status, skipped=True, applied=False)


def build_reconciliation_service(db: Session, settings: Settings | None = None) -> ReconciliationService:
    """Wire the service from settings; AI capabilities are enabled only with an API key."""

    settings = settings or get_settings()
    judge = None
    if settings.openai_api_key:
        judge = OpenAIChatCompletionsJudge(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.openai_timeout_seconds,
        )
    standardizer = LLMValueStandardizer(judge) if judge is not None and settings.enable_ai_standardization else None
    profile_store = SqlProfileStore(db, settings.profile_tables)
    return ReconciliationService(
        db,
        registry=TransformationRegistry(standardizer=standardizer),
        validator=ValidationEngine(judge if settings.enable_narrative_validation else None),
        store=ProposalStore(db),
        executor=ApplicationExecutor(db, profile_store),
        proposal_ttl_hours=settings.proposal_ttl_hours,
    )


def _snapshot_value(snapshot: dict[str, str | None], rule: TransformationRule) -> str | None:
    if not rule.target_table or not rule.target_field:
        return None
    return snapshot.get(f"{rule.target_table}.{rule.target_field}")


def _coerce_reviewer_value(value: Any, kind: str) -> ProposedValue:
    if isinstance(value, str):
        return deserialize_value(value, kind)
    try:
        return coerce_to_kind(value, kind)
    except (TypeError, ValueError):
        return from_python(value)


def _outcome(
    proposal: ProfileUpdateProposal,
    validation: ValidationResult,
    conflicts: list[DataConflict],
    note: str | None,
) -> DraftOutcome:
    return DraftOutcome(
        proposal_id=proposal.id,
        status=proposal.status,
        target_locator=proposal.target_locator,
        proposed_value=proposal.proposed_value,
        confidence=proposal.confidence,
        is_valid=validation.is_valid,
        degraded=validation.degraded,
        conflicts=conflicts,
        note=note,
    )
