"""Credit split between payee and platform."""

from __future__ import annotations


def split_credits(credits: int, payee_share_percent: int) -> tuple[int, int]:
    """Return ``(payee_payout, platform_fee)``; the fee absorbs rounding."""
    if credits < 0:
        raise ValueError("credits must not be negative")
    if not 0 <= payee_share_percent <= 100:
        raise ValueError("payee_share_percent must be between 0 and 100")
    payout = credits * payee_share_percent // 100
    return payout, credits - payout
