"""Minimal WebAssembly binary reader/writer for custom sections."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from polctl_core.errors import InvalidPolicyModule

WASM_MAGIC = b"\x00asm"
WASM_VERSION = b"\x01\x00\x00\x00"
CUSTOM_SECTION_ID = 0


@dataclass(frozen=True)
class Section:
    section_id: int
    start: int
    end: int
    name: str | None = None
    payload_offset: int = 0


def is_wasm_module(data: bytes) -> bool:
    return data[:4] == WASM_MAGIC


def iter_sections(module: bytes) -> Iterator[Section]:
    _check_header(module)
    offset = len(WASM_MAGIC) + len(WASM_VERSION)
    while offset < len(module):
        start = offset
        section_id = module[offset]
        size, offset = read_uleb128(module, offset + 1)
        end = offset + size
        if end > len(module):
            raise InvalidPolicyModule(f"section at offset {start} overruns the module")
        if section_id == CUSTOM_SECTION_ID:
            name_len, name_offset = read_uleb128(module, offset)
            payload_offset = name_offset + name_len
            if payload_offset > end:
                raise InvalidPolicyModule(f"custom section name at offset {start} overruns its section")
            try:
                name = module[name_offset:payload_offset].decode("utf-8")
            except UnicodeDecodeError as exc:
                raise InvalidPolicyModule(f"custom section name at offset {start} is not UTF-8") from exc
            yield Section(section_id, start, end, name=name, payload_offset=payload_offset)
        else:
            yield Section(section_id, start, end, payload_offset=offset)
        offset = end


def read_custom_section(module: bytes, name: str) -> bytes | None:
    found: bytes | None = None
    for section in iter_sections(module):
        if section.name == name:
            found = module[section.payload_offset : section.end]
    return found


def write_custom_section(module: bytes, name: str, payload: bytes) -> bytes:
    """Return ``module`` with every ``name`` custom section replaced by one holding ``payload``."""
    kept = bytearray(module[: len(WASM_MAGIC) + len(WASM_VERSION)])
    for section in iter_sections(module):
        if section.name == name:
            continue
        kept.extend(module[section.start : section.end])
    encoded_name = name.encode("utf-8")
    body = encode_uleb128(len(encoded_name)) + encoded_name + payload
    kept.append(CUSTOM_SECTION_ID)
    kept.extend(encode_uleb128(len(body)))
    kept.extend(body)
    return bytes(kept)


def read_uleb128(data: bytes, offset: int) -> tuple[int, int]:
    result = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise InvalidPolicyModule("truncated LEB128 value")
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, offset
        shift += 7
        if shift > 35:
            raise InvalidPolicyModule("LEB128 value too large")


def encode_uleb128(value: int) -> bytes:
    if value < 0:
        raise ValueError("LEB128 value must be non-negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _check_header(module: bytes) -> None:
    if not is_wasm_module(module):
        raise InvalidPolicyModule("not a WebAssembly module")
    if module[4:8] != WASM_VERSION:
        raise InvalidPolicyModule("unsupported WebAssembly binary version")
