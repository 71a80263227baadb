"""Anchor IDL loading and Borsh layout decoding.

Only the subset of the Borsh type system used by the launchpad program is
supported: fixed-width integers, bool, string/bytes, pubkey, option, vec,
fixed arrays and nested ``defined`` structs. Both the legacy IDL format
(``fields`` inline on events, ``publicKey``) and the 0.30 format
(``discriminator`` arrays, structs under ``types``, ``pubkey``) are accepted.
"""
from __future__ import annotations

import hashlib
import json
import struct
from pathlib import Path
from typing import Any, Optional, Union

from solders.pubkey import Pubkey

DEFAULT_IDL_PATH = Path(__file__).with_name("idl") / "launchpad.json"

_INT_FORMATS = {
    "u8": "<B",
    "i8": "<b",
    "u16": "<H",
    "i16": "<h",
    "u32": "<I",
    "i32": "<i",
    "u64": "<Q",
    "i64": "<q",
    "f32": "<f",
    "f64": "<d",
}


class IdlError(ValueError):
    pass


def sighash(namespace: str, name: str) -> bytes:
    return hashlib.sha256(f"{namespace}:{name}".encode()).digest()[:8]


class BorshReader:
    def __init__(self, data: bytes, types: dict[str, list[dict]]) -> None:
        self.data = data
        self.offset = 0
        self.types = types

    def _take(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise IdlError(f"Buffer underrun reading {size} bytes at offset {self.offset}")
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def read(self, type_spec: Union[str, dict]) -> Any:
        if isinstance(type_spec, str):
            if type_spec in _INT_FORMATS:
                fmt = _INT_FORMATS[type_spec]
                return struct.unpack(fmt, self._take(struct.calcsize(fmt)))[0]
            if type_spec in ("u128", "i128"):
                return int.from_bytes(self._take(16), "little", signed=type_spec == "i128")
            if type_spec == "bool":
                return self._take(1) != b"\x00"
            if type_spec in ("pubkey", "publicKey"):
                return str(Pubkey.from_bytes(self._take(32)))
            if type_spec == "string":
                length = self.read("u32")
                return self._take(length).decode("utf-8")
            if type_spec == "bytes":
                length = self.read("u32")
                return self._take(length)
            raise IdlError(f"Unsupported IDL type: {type_spec}")

        if "option" in type_spec:
            flag = self.read("u8")
            return self.read(type_spec["option"]) if flag else None
        if "vec" in type_spec:
            length = self.read("u32")
            return [self.read(type_spec["vec"]) for _ in range(length)]
        if "array" in type_spec:
            inner, size = type_spec["array"]
            return [self.read(inner) for _ in range(int(size))]
        if "defined" in type_spec:
            defined = type_spec["defined"]
            name = defined["name"] if isinstance(defined, dict) else defined
            return self.read_struct(name)
        raise IdlError(f"Unsupported IDL type: {type_spec}")

    def read_struct(self, name: str) -> dict[str, Any]:
        fields = self.types.get(name)
        if fields is None:
            raise IdlError(f"Unknown IDL type: {name}")
        return {field["name"]: self.read(field["type"]) for field in fields}


class ProgramIdl:
    """Decoded view of an Anchor IDL document."""

    def __init__(self, document: dict) -> None:
        self.document = document
        self.name = (document.get("metadata") or {}).get("name") or document.get("name", "")
        self.address = document.get("address") or (document.get("metadata") or {}).get("address")
        self.types: dict[str, list[dict]] = {}
        for item in document.get("types", []):
            type_def = item.get("type", {})
            if type_def.get("kind") == "struct":
                self.types[item["name"]] = type_def.get("fields", [])

        self.events: dict[bytes, str] = {}
        for event in document.get("events", []):
            name = event["name"]
            if "fields" in event:
                self.types[name] = event["fields"]
            self.events[self._discriminator(event, "event")] = name

        self.accounts: dict[str, bytes] = {}
        for account in document.get("accounts", []):
            name = account["name"]
            if account.get("type", {}).get("kind") == "struct":
                self.types[name] = account["type"].get("fields", [])
            self.accounts[name] = self._discriminator(account, "account")

        self.instructions: dict[str, dict] = {
            ix["name"]: ix for ix in document.get("instructions", [])
        }

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "ProgramIdl":
        idl_path = Path(path) if path else DEFAULT_IDL_PATH
        with idl_path.open(encoding="utf-8") as handle:
            return cls(json.load(handle))

    @staticmethod
    def _discriminator(entry: dict, namespace: str) -> bytes:
        if entry.get("discriminator"):
            return bytes(entry["discriminator"])
        return sighash(namespace, entry["name"])

    def decode_event(self, payload: bytes) -> Optional[tuple[str, dict[str, Any]]]:
        name = self.events.get(payload[:8])
        if name is None:
            return None
        reader = BorshReader(payload[8:], self.types)
        return name, reader.read_struct(name)

    def decode_account(self, name: str, data: bytes) -> dict[str, Any]:
        expected = self.accounts.get(name)
        if expected is None:
            raise IdlError(f"Unknown account type: {name}")
        if data[:8] != expected:
            raise IdlError(f"Account data is not a {name}")
        return BorshReader(data[8:], self.types).read_struct(name)

    def instruction_data(self, name: str, *args: int) -> bytes:
        """Encode an instruction call: discriminator followed by packed args."""
        ix = self.instructions.get(name)
        if ix is None:
            raise IdlError(f"Unknown instruction: {name}")
        params = ix.get("args", [])
        if len(params) != len(args):
            raise IdlError(f"{name} expects {len(params)} args, got {len(args)}")
        data = bytes(ix["discriminator"]) if ix.get("discriminator") else sighash("global", name)
        for param, value in zip(params, args):
            fmt = _INT_FORMATS.get(param["type"])
            if fmt is None:
                raise IdlError(f"Unsupported instruction arg type: {param['type']}")
            data += struct.pack(fmt, int(value))
        return data
