import base64
import struct

import pytest
from solders.pubkey import Pubkey

from campaign_sync.onchain.accounts import AccountDecoder
from campaign_sync.onchain.event_decoder import EventDecoder
from campaign_sync.onchain.idl import IdlError, ProgramIdl, sighash

PROGRAM_ID = "GwAWdhc8NuRVCRn4guyXz7UGaQHCwnnVppBKMtZmxVM2"
OTHER_PROGRAM = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"


def _string(value: str) -> bytes:
    raw = value.encode()
    return struct.pack("<I", len(raw)) + raw


def _donated_payload(donor: Pubkey, creator: Pubkey, ordinal: int, amount: int, ts: int) -> bytes:
    return (
        sighash("event", "DonatedFundEvent")
        + bytes(donor)
        + bytes(creator)
        + struct.pack("<QQq", ordinal, amount, ts)
    )


def _data_line(payload: bytes) -> str:
    return "Program data: " + base64.b64encode(payload).decode()


@pytest.fixture(scope="module")
def idl() -> ProgramIdl:
    return ProgramIdl.load()


def test_event_discriminators_follow_anchor_sighash(idl) -> None:
    assert sighash("event", "DonatedFundEvent") in idl.events
    assert idl.events[sighash("event", "CreatedCampaignEvent")] == "CreatedCampaignEvent"
    assert len(idl.events) == 7


def test_decode_created_campaign_event(idl) -> None:
    creator = Pubkey.new_unique()
    payload = (
        sighash("event", "CreatedCampaignEvent")
        + bytes(creator)
        + struct.pack("<Q", 3)
        + _string("Moon Fund")
        + _string("MOON")
        + _string("https://example.com/moon.json")
        + struct.pack("<Qqqq", 10_000_000_000, 1_700_000_000, 1_700_100_000, 1_699_000_000)
    )
    name, data = idl.decode_event(payload)
    assert name == "CreatedCampaignEvent"
    assert data["creator"] == str(creator)
    assert data["campaign_index"] == 3
    assert data["symbol"] == "MOON"
    assert data["donation_goal"] == 10_000_000_000
    assert data["trade_deadline"] == 1_700_100_000


def test_unknown_discriminator_is_ignored(idl) -> None:
    assert idl.decode_event(b"\x00" * 16) is None


def test_truncated_payload_raises(idl) -> None:
    payload = _donated_payload(Pubkey.new_unique(), Pubkey.new_unique(), 1, 5, 9)[:-4]
    with pytest.raises(IdlError):
        idl.decode_event(payload)


def test_decoder_only_reads_monitored_program_frames(idl) -> None:
    donor, creator = Pubkey.new_unique(), Pubkey.new_unique()
    ours = _donated_payload(donor, creator, 2, 1_500_000_000, 1_700_000_000)
    spoofed = _donated_payload(donor, creator, 2, 999, 1_700_000_000)
    logs = [
        f"Program {PROGRAM_ID} invoke [1]",
        "Program log: Instruction: Donate",
        f"Program {OTHER_PROGRAM} invoke [2]",
        _data_line(spoofed),
        f"Program {OTHER_PROGRAM} success",
        _data_line(ours),
        "Program data: not-base64!!",
        f"Program {PROGRAM_ID} success",
    ]
    events = EventDecoder(PROGRAM_ID, idl).decode_logs(logs)
    assert [event.name for event in events] == ["DonatedFundEvent"]
    assert events[0].data["donated_amount"] == 1_500_000_000
    assert events[0].data["creator"] == str(creator)


def test_decoder_handles_missing_logs(idl) -> None:
    assert EventDecoder(PROGRAM_ID, idl).decode_logs(None) == []


def test_account_decoder_reads_campaign_and_config(idl) -> None:
    creator, mint = Pubkey.new_unique(), Pubkey.new_unique()
    campaign = (
        sighash("account", "CampaignAccount")
        + bytes(creator)
        + struct.pack("<Q", 0)
        + _string("Moon Fund")
        + _string("MOON")
        + _string("uri")
        + struct.pack("<Qqqq", 10, 1, 2, 3)
        + b"\x01"
        + bytes(mint)
        + struct.pack("<QQQB", 1_000, 100, 50, 254)
    )
    state = AccountDecoder(idl).campaign(campaign)
    assert state.mint == str(mint)
    assert state.total_token_bought == 1_000
    assert state.total_claimed == 100

    operator, treasury = Pubkey.new_unique(), Pubkey.new_unique()
    config = sighash("account", "Config") + bytes(operator) + bytes(treasury) + struct.pack("<HB", 150, 255)
    decoded = AccountDecoder(idl).config(config)
    assert decoded.operator == str(operator)
    assert decoded.protocol_fee_bps == 150


def test_account_decoder_rejects_wrong_discriminator(idl) -> None:
    with pytest.raises(IdlError):
        AccountDecoder(idl).config(b"\x00" * 80)


def test_instruction_data_packs_args(idl) -> None:
    data = idl.instruction_data("update_claimable_amount", 400)
    assert data == sighash("global", "update_claimable_amount") + struct.pack("<Q", 400)
    assert idl.instruction_data("create_token", 200)[8:] == struct.pack("<H", 200)
    with pytest.raises(IdlError):
        idl.instruction_data("update_claimable_amount")
