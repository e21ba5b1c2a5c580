"""Persistent proposal queue with a conditional status transition primitive."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from profile_reconciler.errors import ProposalNotFoundError
from profile_reconciler.models.enums import ProposalStatus
from profile_reconciler.models.profile_update_proposal import ProfileUpdateProposal

PENDING_SORT_KEYS = ("date", "confidence", "subject")
RECENT_PENDING_LIMIT = 10


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class PendingBatch:
    """PENDING proposals that came from one submission for one subject."""

    subject_id: str
    source_id: str
    created_at: datetime
    proposals: list[ProfileUpdateProposal] = field(default_factory=list)


@dataclass(slots=True)
class ProposalStats:
    total: int
    by_status: dict[str, int]
    pending_by_update_type: dict[str, int]
    pending_by_priority: dict[int, int]
    average_confidence: float | None
    average_feedback_rating: float | None
    recent_pending: list[ProfileUpdateProposal]


class ProposalStore:
    """SQLAlchemy-backed queue of profile update proposals.

    The store never commits; transaction boundaries belong to the caller.
    Status changes go exclusively through ``transition``, which only touches
    rows that are still PENDING and reports how many rows it changed.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    @property
    def db(self) -> Session:
        return self._db

    def create(self, proposal: ProfileUpdateProposal) -> ProfileUpdateProposal:
        if proposal.id is not None:
            raise ValueError("Proposals are append-only; create() takes a new record.")
        self._db.add(proposal)
        self._db.flush()
        return proposal

    def get(self, proposal_id: int) -> ProfileUpdateProposal | None:
        return self._db.scalar(select(ProfileUpdateProposal).where(ProfileUpdateProposal.id == proposal_id))

    def require(self, proposal_id: int) -> ProfileUpdateProposal:
        proposal = self.get(proposal_id)
        if proposal is None:
            raise ProposalNotFoundError(proposal_id)
        return proposal

    def list_by_status(self, status: str, *, limit: int | None = None) -> list[ProfileUpdateProposal]:
        stmt = (
            select(ProfileUpdateProposal)
            .where(ProfileUpdateProposal.status == status)
            .order_by(ProfileUpdateProposal.created_at.desc(), ProfileUpdateProposal.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._db.scalars(stmt))

    def list_by_subject(
        self,
        subject_id: str,
        *,
        status: str | None = None,
        source_id: str | None = None,
    ) -> list[ProfileUpdateProposal]:
        stmt = select(ProfileUpdateProposal).where(ProfileUpdateProposal.subject_id == subject_id)
        if status is not None:
            stmt = stmt.where(ProfileUpdateProposal.status == status)
        if source_id is not None:
            stmt = stmt.where(ProfileUpdateProposal.source_id == source_id)
        return list(self._db.scalars(stmt.order_by(ProfileUpdateProposal.id.asc())))

    def list_pending(
        self,
        *,
        subject_id: str | None = None,
        sort_by: str = "date",
        limit: int | None = None,
    ) -> list[ProfileUpdateProposal]:
        """Return PENDING proposals, newest first unless another order is requested."""

        if sort_by not in PENDING_SORT_KEYS:
            raise ValueError(f"sort_by must be one of {', '.join(PENDING_SORT_KEYS)}")
        stmt = select(ProfileUpdateProposal).where(ProfileUpdateProposal.status == ProposalStatus.PENDING.value)
        if subject_id is not None:
            stmt = stmt.where(ProfileUpdateProposal.subject_id == subject_id)
        if sort_by == "confidence":
            stmt = stmt.order_by(ProfileUpdateProposal.confidence.desc(), ProfileUpdateProposal.id.desc())
        elif sort_by == "subject":
            stmt = stmt.order_by(ProfileUpdateProposal.subject_id.asc(), ProfileUpdateProposal.id.desc())
        else:
            stmt = stmt.order_by(ProfileUpdateProposal.created_at.desc(), ProfileUpdateProposal.id.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._db.scalars(stmt))

    def list_pending_for_locator(
        self,
        subject_id: str,
        target_table: str,
        target_field: str,
        *,
        exclude_id: int | None = None,
    ) -> list[ProfileUpdateProposal]:
        stmt = select(ProfileUpdateProposal).where(
            ProfileUpdateProposal.subject_id == subject_id,
            ProfileUpdateProposal.target_table == target_table,
            ProfileUpdateProposal.target_field == target_field,
            ProfileUpdateProposal.status == ProposalStatus.PENDING.value,
        )
        if exclude_id is not None:
            stmt = stmt.where(ProfileUpdateProposal.id != exclude_id)
        return list(self._db.scalars(stmt.order_by(ProfileUpdateProposal.id.asc())))

    def group_pending(self, *, subject_id: str | None = None, sort_by: str = "date") -> list[PendingBatch]:
        """Group PENDING proposals into review batches keyed by subject and source."""

        batches: dict[tuple[str, str], PendingBatch] = {}
        for proposal in self.list_pending(subject_id=subject_id, sort_by=sort_by):
            key = (proposal.subject_id, proposal.source_id)
            batch = batches.get(key)
            if batch is None:
                batch = PendingBatch(
                    subject_id=proposal.subject_id,
                    source_id=proposal.source_id,
                    created_at=proposal.created_at,
                )
                batches[key] = batch
            batch.proposals.append(proposal)
            if proposal.created_at < batch.created_at:
                batch.created_at = proposal.created_at
        for batch in batches.values():
            batch.proposals.sort(key=lambda item: item.id)
        return list(batches.values())

    def transition(
        self,
        proposal_id: int,
        status: ProposalStatus | str,
        *,
        reviewed_by: str | None = None,
        review_notes: str | None = None,
        proposed_value: str | None = None,
        value_kind: str | None = None,
        feedback_rating: int | None = None,
        feedback_notes: str | None = None,
        reviewed_at: datetime | None = None,
    ) -> int:
        """Move one proposal out of PENDING.

        Executes ``UPDATE ... WHERE id = ? AND status = 'PENDING'`` and returns
        the affected row count, so a caller that lost a race sees 0.
        """

        values: dict[str, Any] = {
            "status": str(status),
            "reviewed_at": reviewed_at or utcnow(),
        }
        if reviewed_by is not None:
            values["reviewed_by"] = reviewed_by
        if review_notes is not None:
            values["review_notes"] = review_notes
        if proposed_value is not None:
            values["proposed_value"] = proposed_value
        if value_kind is not None:
            values["value_kind"] = value_kind
        if feedback_rating is not None:
            values["feedback_rating"] = feedback_rating
        if feedback_notes is not None:
            values["feedback_notes"] = feedback_notes

        self._db.flush()
        result = self._db.execute(
            update(ProfileUpdateProposal)
            .where(
                ProfileUpdateProposal.id == proposal_id,
                ProfileUpdateProposal.status == ProposalStatus.PENDING.value,
            )
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    def add_conflict_reference(self, proposal_id: int, conflict: dict[str, Any]) -> bool:
        """Attach a conflict record to a proposal that is still PENDING."""

        proposal = self.get(proposal_id)
        if proposal is None or proposal.status != ProposalStatus.PENDING.value:
            return False
        proposal.conflicts_json = [*(proposal.conflicts_json or []), conflict]
        self._db.flush()
        return True

    def expire_stale(self, now: datetime | None = None) -> int:
        """Mark every PENDING proposal whose deadline passed as EXPIRED in one statement."""

        result = self._db.execute(
            update(ProfileUpdateProposal)
            .where(
                ProfileUpdateProposal.status == ProposalStatus.PENDING.value,
                ProfileUpdateProposal.expires_at.is_not(None),
                ProfileUpdateProposal.expires_at < (now or utcnow()),
            )
            .values(status=ProposalStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    def purge_expired(self, before: datetime) -> int:
        result = self._db.execute(
            delete(ProfileUpdateProposal)
            .where(
                ProfileUpdateProposal.status == ProposalStatus.EXPIRED.value,
                ProfileUpdateProposal.expires_at < before,
            )
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    def stats(self) -> ProposalStats:
        by_status = {
            str(status): int(count)
            for status, count in self._db.execute(
                select(ProfileUpdateProposal.status, func.count(ProfileUpdateProposal.id)).group_by(
                    ProfileUpdateProposal.status
                )
            ).all()
        }
        pending_by_update_type: dict[str, int] = defaultdict(int)
        pending_by_priority: dict[int, int] = defaultdict(int)
        rows = self._db.execute(
            select(
                ProfileUpdateProposal.update_type,
                ProfileUpdateProposal.priority,
                func.count(ProfileUpdateProposal.id),
            )
            .where(ProfileUpdateProposal.status == ProposalStatus.PENDING.value)
            .group_by(ProfileUpdateProposal.update_type, ProfileUpdateProposal.priority)
        ).all()
        for update_type, priority, count in rows:
            pending_by_update_type[str(update_type)] += int(count)
            pending_by_priority[int(priority)] += int(count)

        average_confidence = self._db.scalar(select(func.avg(ProfileUpdateProposal.confidence)))
        average_feedback_rating = self._db.scalar(
            select(func.avg(ProfileUpdateProposal.feedback_rating)).where(
                ProfileUpdateProposal.feedback_rating.is_not(None)
            )
        )
        return ProposalStats(
            total=sum(by_status.values()),
            by_status=by_status,
            pending_by_update_type=dict(pending_by_update_type),
            pending_by_priority=dict(pending_by_priority),
            average_confidence=float(average_confidence) if average_confidence is not None else None,
            average_feedback_rating=(
                float(average_feedback_rating) if average_feedback_rating is not None else None
            ),
            recent_pending=self.list_pending(limit=RECENT_PENDING_LIMIT),
        )
