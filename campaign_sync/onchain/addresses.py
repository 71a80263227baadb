"""Program-derived address helpers for the launchpad program."""
from __future__ import annotations

from typing import Union

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

CAMPAIGN_SEED = b"campaign"
CONFIG_SEED = b"config"
TREASURY_SEED = b"treasury"
BONDING_CURVE_SEED = b"bonding-curve"
METADATA_SEED = b"metadata"

PubkeyLike = Union[str, Pubkey]


def to_pubkey(value: PubkeyLike) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    return Pubkey.from_string(str(value))


def campaign_index_from_ordinal(ordinal: Union[int, str], offset: int) -> int:
    """Map the ordinal carried by program events to the stored campaign index.

    Events report a 1-based decimal ordinal while account seeds use the
    0-based index, so ``offset`` is subtracted. Every event handler goes
    through here so the correction is applied exactly once.
    """
    value = int(str(ordinal), 10)
    index = value - offset
    if index < 0:
        raise ValueError(f"Campaign ordinal {ordinal} is below offset {offset}")
    return index


def campaign_index_seed(campaign_index: int) -> bytes:
    return int(campaign_index).to_bytes(8, "little")


def find_campaign_address(program_id: PubkeyLike, creator: PubkeyLike, campaign_index: int) -> Pubkey:
    address, _bump = Pubkey.find_program_address(
        [CAMPAIGN_SEED, bytes(to_pubkey(creator)), campaign_index_seed(campaign_index)],
        to_pubkey(program_id),
    )
    return address


def find_config_address(program_id: PubkeyLike) -> Pubkey:
    address, _bump = Pubkey.find_program_address([CONFIG_SEED], to_pubkey(program_id))
    return address


def find_treasury_address(program_id: PubkeyLike) -> Pubkey:
    address, _bump = Pubkey.find_program_address([TREASURY_SEED], to_pubkey(program_id))
    return address


def find_bonding_curve_address(pump_fun_program_id: PubkeyLike, mint: PubkeyLike) -> Pubkey:
    address, _bump = Pubkey.find_program_address(
        [BONDING_CURVE_SEED, bytes(to_pubkey(mint))],
        to_pubkey(pump_fun_program_id),
    )
    return address


def find_metadata_address(metadata_program_id: PubkeyLike, mint: PubkeyLike) -> Pubkey:
    program = to_pubkey(metadata_program_id)
    address, _bump = Pubkey.find_program_address(
        [METADATA_SEED, bytes(program), bytes(to_pubkey(mint))],
        program,
    )
    return address


def find_associated_token_address(owner: PubkeyLike, mint: PubkeyLike) -> Pubkey:
    # Owners may be off-curve (program-derived), which the seed scheme allows.
    return get_associated_token_address(to_pubkey(owner), to_pubkey(mint))
