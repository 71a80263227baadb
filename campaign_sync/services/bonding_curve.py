"""Constant-product quote for the pump.fun initial bonding curve."""
from __future__ import annotations

# Initial virtual reserves of a freshly created pump.fun curve.
INITIAL_VIRTUAL_SOL_RESERVES = 30_000_000_000
INITIAL_VIRTUAL_TOKEN_RESERVES = 1_073_000_000_000_000

BPS_DENOMINATOR = 10_000


def calc_out_token_amount(
    sol_amount: int,
    slippage_bps: int,
    virtual_sol_reserves: int = INITIAL_VIRTUAL_SOL_RESERVES,
    virtual_token_reserves: int = INITIAL_VIRTUAL_TOKEN_RESERVES,
) -> int:
    """Tokens bought for ``sol_amount`` lamports, reduced by ``slippage_bps``."""
    sol_amount = int(sol_amount)
    if sol_amount <= 0:
        return 0
    k = virtual_sol_reserves * virtual_token_reserves
    new_sol_reserves = virtual_sol_reserves + sol_amount
    new_token_reserves = k // new_sol_reserves + 1
    tokens_out = virtual_token_reserves - new_token_reserves
    tokens_out -= tokens_out * int(slippage_bps) // BPS_DENOMINATOR
    return max(tokens_out, 0)
