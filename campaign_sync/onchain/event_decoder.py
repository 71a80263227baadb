"""Extract program events from transaction log lines."""
from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from campaign_sync.onchain.idl import IdlError, ProgramIdl

logger = logging.getLogger(__name__)

_INVOKE_RE = re.compile(r"^Program (\S+) invoke \[\d+\]$")
_EXIT_RE = re.compile(r"^Program (\S+) (success|failed.*)$")
_DATA_PREFIX = "Program data: "


@dataclass
class DecodedEvent:
    name: str
    data: dict[str, Any] = field(default_factory=dict)


class EventDecoder:
    """Decode events emitted by one program.

    Anchor emits events as base64 ``Program data:`` lines; only lines written
    while the monitored program is at the top of the invocation stack belong
    to it, so CPI callees cannot spoof events.
    """

    def __init__(self, program_id: str, idl: Optional[ProgramIdl] = None) -> None:
        self.program_id = str(program_id)
        self.idl = idl or ProgramIdl.load()

    def decode_logs(self, log_lines: Optional[Iterable[str]]) -> list[DecodedEvent]:
        events: list[DecodedEvent] = []
        stack: list[str] = []
        for line in log_lines or []:
            invoke = _INVOKE_RE.match(line)
            if invoke:
                stack.append(invoke.group(1))
                continue
            exit_ = _EXIT_RE.match(line)
            if exit_:
                if stack and stack[-1] == exit_.group(1):
                    stack.pop()
                continue
            if not line.startswith(_DATA_PREFIX):
                continue
            if not stack or stack[-1] != self.program_id:
                continue
            event = self._decode_data(line[len(_DATA_PREFIX) :].strip())
            if event is not None:
                events.append(event)
        return events

    def _decode_data(self, encoded: str) -> Optional[DecodedEvent]:
        try:
            payload = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            logger.debug("Skipping non-base64 program data line")
            return None
        try:
            decoded = self.idl.decode_event(payload)
        except IdlError as exc:
            logger.warning("Failed to decode program event: %s", exc)
            return None
        if decoded is None:
            return None
        name, data = decoded
        return DecodedEvent(name=name, data=data)
