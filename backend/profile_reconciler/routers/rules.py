"""Transformation rule configuration routes."""

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from profile_reconciler.db.dependencies import get_db
from profile_reconciler.schemas.common import ApiResponse, DeleteResult
from profile_reconciler.schemas.rules import RuleCreate, RuleRead, RuleUpdate
from profile_reconciler.services.rules import create_rule, delete_rule, get_rule, list_rules, update_rule

router = APIRouter(prefix="/rules")


@router.get("", response_model=ApiResponse[list[RuleRead]])
def read_rules(
    question_id: str | None = Query(default=None, min_length=1),
    db: Session = Depends(get_db),
) -> ApiResponse[list[RuleRead]]:
    return ApiResponse(data=[RuleRead.model_validate(rule) for rule in list_rules(db, question_id)])


@router.post("", response_model=ApiResponse[RuleRead])
def add_rule(payload: RuleCreate, db: Session = Depends(get_db)) -> ApiResponse[RuleRead]:
    """Create one transformation rule."""

    return ApiResponse(data=RuleRead.model_validate(create_rule(db, payload)))


@router.get("/{rule_id}", response_model=ApiResponse[RuleRead])
def read_rule(rule_id: int = Path(..., ge=1), db: Session = Depends(get_db)) -> ApiResponse[RuleRead]:
    rule = get_rule(db, rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return ApiResponse(data=RuleRead.model_validate(rule))


@router.patch("/{rule_id}", response_model=ApiResponse[RuleRead])
def patch_rule(
    payload: RuleUpdate,
    rule_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
) -> ApiResponse[RuleRead]:
    """Edit one transformation rule."""

    rule = update_rule(db, rule_id, payload)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    return ApiResponse(data=RuleRead.model_validate(rule))


@router.delete("/{rule_id}", response_model=ApiResponse[DeleteResult])
def remove_rule(rule_id: int = Path(..., ge=1), db: Session = Depends(get_db)) -> ApiResponse[DeleteResult]:
    if not delete_rule(db, rule_id):
        raise HTTPException(status_code=404, detail="Rule not found")
    return ApiResponse(data=DeleteResult(id=rule_id, deleted=True))
