"""Ledger API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.security import Principal, get_current_principal
from app.modules.ledger.schemas import BalanceRead, LedgerEntryRead, TopUpRequest
from app.modules.ledger.service import LedgerService, get_ledger_service
from app.shared.exceptions import UnauthorizedException
from app.shared.pagination import Page, PaginationParams, build_page, get_pagination_params

router = APIRouter(prefix="/ledger", tags=["ledger"])


@router.get("/balance", response_model=BalanceRead)
async def get_balance(
    account_id: UUID | None = Query(default=None),
    service: LedgerService = Depends(get_ledger_service),
    principal: Principal = Depends(get_current_principal),
) -> BalanceRead:
    """Balance of the caller, or of any account for admins."""
    target = account_id or principal.id
    if target != principal.id and not principal.is_admin:
        raise UnauthorizedException("Access denied")
    return await service.get_balance(target)


@router.get("/entries", response_model=Page[LedgerEntryRead])
async def list_entries(
    account_id: UUID | None = Query(default=None),
    pagination: PaginationParams = Depends(get_pagination_params),
    service: LedgerService = Depends(get_ledger_service),
    principal: Principal = Depends(get_current_principal),
) -> Page[LedgerEntryRead]:
    """List ledger movements."""
    items, total = await service.list_entries(
        account_id=account_id or principal.id,
        actor=principal,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return build_page(items, total, pagination, LedgerEntryRead)


@router.post("/top-up", response_model=BalanceRead)
async def top_up(
    payload: TopUpRequest,
    service: LedgerService = Depends(get_ledger_service),
    principal: Principal = Depends(get_current_principal),
) -> BalanceRead:
    """Credit an account (admin)."""
    return await service.top_up(payload.account_id, payload.amount, principal)
