"""Operator signer for automation transactions."""
from __future__ import annotations

import logging
import os
from typing import Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from campaign_sync.config import settings

logger = logging.getLogger(__name__)


class OperatorWallet:
    def __init__(self, private_key: Optional[str] = None, keypair: Optional[Keypair] = None) -> None:
        if keypair is not None:
            self._keypair = keypair
            return
        env_key = os.getenv("OPERATOR_PRIVATE_KEY", "")
        key = (private_key or env_key or settings.operator_private_key).strip()
        if not key:
            raise ValueError("Missing OPERATOR_PRIVATE_KEY")
        try:
            self._keypair = Keypair.from_base58_string(key)
        except Exception as exc:
            raise ValueError("Invalid operator private key") from exc

    @property
    def keypair(self) -> Keypair:
        return self._keypair

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    def __repr__(self) -> str:
        return f"OperatorWallet(pubkey={self.pubkey})"
