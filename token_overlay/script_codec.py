"""Push-drop locking script encoding and decoding.

A token output carries its data as plain pushes that the spending script
discards with ``OP_DROP``. Only push opcodes and the drop marker are
recognised here; this is not a Script interpreter.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional, Sequence, Tuple, Union

from .models import LayoutVersion

logger = logging.getLogger(__name__)

OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1NEGATE = 0x4F
OP_1 = 0x51
OP_16 = 0x60
OP_DROP = 0x75

MAX_PUSH_LENGTH = 0xFFFFFFFF


class ScriptEncodingError(ValueError):
    """Raised when data cannot be expressed as a script push."""


class MalformedScriptError(ValueError):
    """Raised while chunking a script whose pushes run past its end."""


class DecodeErrorCode(str, Enum):
    MALFORMED_SCRIPT = "malformed_script"


@dataclass(frozen=True)
class DecodeError:
    """Why a locking script could not be read as a push-drop script."""

    code: DecodeErrorCode
    detail: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.detail}"


@dataclass(frozen=True)
class ScriptChunk:
    opcode: int
    data: Optional[bytes] = None

    @property
    def is_push(self) -> bool:
        return self.data is not None


@dataclass(frozen=True)
class PushDropScript:
    """Decoded push-drop script: the leading key push and the data fields."""

    layout: LayoutVersion
    locking_key: bytes
    fields: Tuple[bytes, ...]

    @property
    def positional_fields(self) -> Tuple[bytes, ...]:
        """Fields as the validator indexes them for this layout."""

        if self.layout is LayoutVersion.A:
            return (self.locking_key,) + self.fields
        return self.fields


def push_data(data: bytes) -> bytes:
    """Return ``data`` prefixed with the shortest push-data opcode for its length."""

    length = len(data)
    if length <= 75:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    if length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    if length <= MAX_PUSH_LENGTH:
        return bytes([OP_PUSHDATA4]) + length.to_bytes(4, "little") + data
    raise ScriptEncodingError(f"push of {length} bytes exceeds the push-data limit")


def encode_pushdrop(
    locking_key: bytes,
    fields: Sequence[bytes],
    layout: LayoutVersion = LayoutVersion.B,
) -> bytes:
    """Build a push-drop locking script for ``fields`` under ``layout``."""

    parts: List[bytes] = [push_data(locking_key)]
    if layout is LayoutVersion.B:
        parts.append(bytes([OP_DROP]))
    parts.extend(push_data(bytes(field)) for field in fields)
    parts.append(bytes([OP_DROP]))
    return b"".join(parts)


def _read_push_length(script: bytes, pos: int, width: int) -> Tuple[int, int]:
    if pos + width > len(script):
        raise MalformedScriptError(f"push length prefix at offset {pos} is truncated")
    return int.from_bytes(script[pos : pos + width], "little"), pos + width


def iter_chunks(script: bytes) -> Iterator[ScriptChunk]:
    """Yield opcodes and push payloads from ``script`` left to right."""

    pos = 0
    end = len(script)
    while pos < end:
        op = script[pos]
        pos += 1

        if op <= 75:
            length = op
        elif op == OP_PUSHDATA1:
            length, pos = _read_push_length(script, pos, 1)
        elif op == OP_PUSHDATA2:
            length, pos = _read_push_length(script, pos, 2)
        elif op == OP_PUSHDATA4:
            length, pos = _read_push_length(script, pos, 4)
        elif op == OP_1NEGATE:
            yield ScriptChunk(op, b"\x81")
            continue
        elif OP_1 <= op <= OP_16:
            yield ScriptChunk(op, bytes([op - OP_1 + 1]))
            continue
        else:
            yield ScriptChunk(op)
            continue

        if pos + length > end:
            raise MalformedScriptError(
                f"push at offset {pos} declares {length} bytes but {end - pos} remain"
            )
        yield ScriptChunk(op, script[pos : pos + length])
        pos += length


def decode_pushdrop(
    script: bytes,
    layout: LayoutVersion = LayoutVersion.B,
    min_fields: Optional[int] = None,
) -> Union[PushDropScript, DecodeError]:
    """Decode ``script`` into its locking key and ordered data fields.

    Returns a :class:`DecodeError` instead of raising for any input that does
    not follow the push-drop layout. Bytes after the terminal ``OP_DROP`` are
    never inspected. An unexpected opcode inside the field region is tolerated
    only when ``min_fields`` fields have already been collected.
    """

    chunks = iter_chunks(bytes(script))
    try:
        first = next(chunks, None)
        if first is None or not first.is_push:
            return _malformed("script does not start with a key push")
        locking_key = first.data or b""

        if layout is LayoutVersion.B:
            second = next(chunks, None)
            if second is None or second.opcode != OP_DROP:
                return _malformed("key push is not followed by OP_DROP")

        fields: List[bytes] = []
        for chunk in chunks:
            if chunk.is_push:
                fields.append(chunk.data or b"")
                continue
            if chunk.opcode == OP_DROP:
                break
            if min_fields is not None and len(fields) >= min_fields:
                logger.debug(
                    "Stopping at opcode 0x%02x after %d fields", chunk.opcode, len(fields)
                )
                break
            return _malformed(f"unexpected opcode 0x{chunk.opcode:02x} in field region")
    except MalformedScriptError as exc:
        return _malformed(str(exc))

    return PushDropScript(layout=layout, locking_key=locking_key, fields=tuple(fields))


def _malformed(detail: str) -> DecodeError:
    return DecodeError(DecodeErrorCode.MALFORMED_SCRIPT, detail)
