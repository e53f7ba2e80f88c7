"""Protocol rules deciding whether decoded fields describe a token output."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from cryptography.hazmat.primitives.asymmetric import ec

from .models import LayoutVersion, TokenCandidate
from .script_codec import PushDropScript

logger = logging.getLogger(__name__)

DEFAULT_PROTOCOL_MARKER = "TOKEN"
TOKEN_ID_LENGTH = 32
AMOUNT_LENGTH = 8
COMPRESSED_PUBKEY_LENGTH = 33


class RejectionCode(str, Enum):
    FIELD_COUNT = "field_count"
    LOCKING_KEY = "locking_key"
    PROTOCOL = "protocol"
    TOKEN_ID = "token_id"
    TOKEN_NOT_ALLOWED = "token_not_allowed"
    AMOUNT = "amount"
    OWNER_KEY = "owner_key"
    METADATA = "metadata"


@dataclass(frozen=True)
class RejectionReason:
    code: RejectionCode
    detail: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.detail}"


@dataclass(frozen=True)
class FieldLayout:
    """Positions of the named token fields for one layout version."""

    version: LayoutVersion
    protocol: int
    token_id: int
    amount: int
    owner_key: int
    metadata: int
    min_fields: int
    locking_key: Optional[int] = None

    @property
    def min_script_fields(self) -> int:
        """Minimum pushes after the key push, which layout A counts as a field."""

        return self.min_fields - (1 if self.locking_key is not None else 0)


FIELD_LAYOUTS: Dict[LayoutVersion, FieldLayout] = {
    LayoutVersion.A: FieldLayout(
        version=LayoutVersion.A,
        locking_key=0,
        protocol=1,
        token_id=2,
        amount=3,
        owner_key=4,
        metadata=5,
        min_fields=5,
    ),
    LayoutVersion.B: FieldLayout(
        version=LayoutVersion.B,
        protocol=0,
        token_id=1,
        amount=2,
        owner_key=3,
        metadata=4,
        min_fields=4,
    ),
}


def parse_amount(field: bytes) -> int:
    """Interpret an 8-byte field as an unsigned little-endian integer."""

    if len(field) != AMOUNT_LENGTH:
        raise ValueError(f"amount must be {AMOUNT_LENGTH} bytes, got {len(field)}")
    return int.from_bytes(field, "little", signed=False)


def encode_amount(amount: int) -> bytes:
    """Inverse of :func:`parse_amount`."""

    return amount.to_bytes(AMOUNT_LENGTH, "little", signed=False)


def parse_metadata(field: bytes) -> Dict[str, Any]:
    text = field.decode("utf-8")
    decoded = json.loads(text)
    if not isinstance(decoded, dict):
        raise ValueError(f"metadata must be a JSON object, got {type(decoded).__name__}")
    return decoded


Stage = Callable[[Sequence[bytes], FieldLayout], Optional[RejectionReason]]


class FieldValidator:
    """Validate positional token fields against the protocol rules.

    Each stage inspects one field and returns a :class:`RejectionReason` or
    ``None``; the first rejection ends the pipeline. Nothing here raises for
    bad input, so callers can scan untrusted outputs freely.
    """

    def __init__(
        self,
        protocol_marker: str = DEFAULT_PROTOCOL_MARKER,
        public_key_length: int = COMPRESSED_PUBKEY_LENGTH,
        strict_key_points: bool = False,
        token_allowlist: Optional[Iterable[str]] = None,
    ) -> None:
        self.protocol_marker = protocol_marker
        self.public_key_length = public_key_length
        self.strict_key_points = strict_key_points
        self.token_allowlist = (
            {token.lower() for token in token_allowlist} if token_allowlist is not None else None
        )
        self._stages: List[Stage] = [
            self._check_field_count,
            self._check_locking_key,
            self._check_protocol,
            self._check_token_id,
            self._check_amount,
            self._check_owner_key,
            self._check_metadata,
        ]

    def validate(
        self, fields: Sequence[bytes], layout: LayoutVersion = LayoutVersion.B
    ) -> Union[TokenCandidate, RejectionReason]:
        table = FIELD_LAYOUTS[layout]
        for stage in self._stages:
            reason = stage(fields, table)
            if reason is not None:
                logger.debug("Rejected %s-layout fields: %s", layout.value, reason)
                return reason

        metadata = None
        if len(fields) > table.metadata:
            metadata = parse_metadata(fields[table.metadata])
        return TokenCandidate(
            layout=layout,
            token_id=bytes(fields[table.token_id]),
            amount=parse_amount(fields[table.amount]),
            owner_key=bytes(fields[table.owner_key]),
            locking_key=bytes(fields[table.locking_key]) if table.locking_key is not None else None,
            metadata=metadata,
        )

    def validate_script(self, script: PushDropScript) -> Union[TokenCandidate, RejectionReason]:
        """Validate a decoded script, carrying its locking key onto the candidate."""

        result = self.validate(script.positional_fields, script.layout)
        if isinstance(result, TokenCandidate) and result.locking_key is None:
            return replace(result, locking_key=script.locking_key)
        return result

    # Stages -----------------------------------------------------------------

    def _check_field_count(
        self, fields: Sequence[bytes], table: FieldLayout
    ) -> Optional[RejectionReason]:
        if len(fields) < table.min_fields:
            return RejectionReason(
                RejectionCode.FIELD_COUNT,
                f"need at least {table.min_fields} fields, got {len(fields)}",
            )
        return None

    def _check_locking_key(
        self, fields: Sequence[bytes], table: FieldLayout
    ) -> Optional[RejectionReason]:
        if table.locking_key is None:
            return None
        return self._check_key(fields[table.locking_key], RejectionCode.LOCKING_KEY)

    def _check_protocol(
        self, fields: Sequence[bytes], table: FieldLayout
    ) -> Optional[RejectionReason]:
        try:
            marker = bytes(fields[table.protocol]).decode("utf-8")
        except UnicodeDecodeError:
            return RejectionReason(RejectionCode.PROTOCOL, "protocol field is not UTF-8")
        if marker != self.protocol_marker:
            return RejectionReason(
                RejectionCode.PROTOCOL, f"expected {self.protocol_marker!r}, got {marker!r}"
            )
        return None

    def _check_token_id(
        self, fields: Sequence[bytes], table: FieldLayout
    ) -> Optional[RejectionReason]:
        token_id = fields[table.token_id]
        if len(token_id) != TOKEN_ID_LENGTH:
            return RejectionReason(
                RejectionCode.TOKEN_ID,
                f"token id must be {TOKEN_ID_LENGTH} bytes, got {len(token_id)}",
            )
        if self.token_allowlist is not None and token_id.hex() not in self.token_allowlist:
            return RejectionReason(
                RejectionCode.TOKEN_NOT_ALLOWED, f"token {token_id.hex()} is not allowlisted"
            )
        return None

    def _check_amount(
        self, fields: Sequence[bytes], table: FieldLayout
    ) -> Optional[RejectionReason]:
        try:
            amount = parse_amount(fields[table.amount])
        except ValueError as exc:
            return RejectionReason(RejectionCode.AMOUNT, str(exc))
        if amount == 0:
            return RejectionReason(RejectionCode.AMOUNT, "amount must be greater than zero")
        return None

    def _check_owner_key(
        self, fields: Sequence[bytes], table: FieldLayout
    ) -> Optional[RejectionReason]:
        return self._check_key(fields[table.owner_key], RejectionCode.OWNER_KEY)

    def _check_metadata(
        self, fields: Sequence[bytes], table: FieldLayout
    ) -> Optional[RejectionReason]:
        if len(fields) <= table.metadata:
            return None
        try:
            parse_metadata(fields[table.metadata])
        except (UnicodeDecodeError, ValueError) as exc:
            return RejectionReason(RejectionCode.METADATA, f"metadata is not a JSON object: {exc}")
        except RecursionError:
            return RejectionReason(RejectionCode.METADATA, "metadata is nested too deeply")
        return None

    def _check_key(self, key: bytes, code: RejectionCode) -> Optional[RejectionReason]:
        if len(key) != self.public_key_length:
            return RejectionReason(
                code, f"public key must be {self.public_key_length} bytes, got {len(key)}"
            )
        if self.strict_key_points:
            try:
                ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), bytes(key))
            except ValueError:
                return RejectionReason(code, "public key is not a point on secp256k1")
        return None
