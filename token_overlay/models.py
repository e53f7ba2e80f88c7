"""Domain models for admitted token outputs.

Candidates come out of the validator with raw byte fields; records are what
the index stores and hands back, so their identifiers and scripts are kept as
hex strings the way they travel over lookup answers.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class LayoutVersion(str, Enum):
    """Field-ordering conventions found in token locking scripts.

    ``A`` pushes the locking key directly ahead of the data fields and folds
    it into the field list. ``B`` separates the locking key from the fields
    with an ``OP_DROP``.
    """

    A = "A"
    B = "B"


@dataclass(frozen=True)
class TransactionOutput:
    """A parsed transaction output as delivered by an outputs provider."""

    locking_script: bytes
    value_units: int


@dataclass(frozen=True)
class TokenCandidate:
    """Validated token fields for a single output, prior to admission."""

    layout: LayoutVersion
    token_id: bytes
    amount: int
    owner_key: bytes
    locking_key: Optional[bytes] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def token_id_hex(self) -> str:
        return self.token_id.hex()


@dataclass
class TokenRecord:
    """Lifecycle entry for an admitted token output."""

    txid: str
    output_index: int
    token_id: str
    amount: int
    owner_key: str
    locking_script: str
    value_units: int
    metadata: Optional[Dict[str, Any]] = None
    spent: bool = False
    admitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> tuple[str, int]:
        return self.txid, self.output_index

    @classmethod
    def from_candidate(
        cls,
        txid: str,
        output_index: int,
        candidate: TokenCandidate,
        output: TransactionOutput,
    ) -> "TokenRecord":
        return cls(
            txid=txid,
            output_index=output_index,
            token_id=candidate.token_id_hex,
            amount=candidate.amount,
            owner_key=candidate.owner_key.hex(),
            locking_script=output.locking_script.hex(),
            value_units=output.value_units,
            metadata=candidate.metadata,
        )

    def fresh(self) -> "TokenRecord":
        """Return a copy reset to the state every admitted record starts in.

        Hex identifiers are lowercased so lookups match regardless of the
        case the caller used.
        """

        return replace(
            self,
            txid=self.txid.lower(),
            token_id=self.token_id.lower(),
            spent=False,
            admitted_at=datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class UtxoRef:
    txid: str
    output_index: int
    amount: int


@dataclass
class TokenBalance:
    """Circulating balance of one token across its unspent outputs."""

    token_id: str
    total_amount: int = 0
    name: Optional[str] = None
    symbol: Optional[str] = None
    decimals: int = 0
    utxos: List[UtxoRef] = field(default_factory=list)

    @classmethod
    def from_records(cls, token_id: str, records: List[TokenRecord]) -> "TokenBalance":
        display: Dict[str, Any] = next(
            (r.metadata for r in records if r.metadata), {}
        )
        decimals = display.get("decimals")
        return cls(
            token_id=token_id,
            total_amount=sum(r.amount for r in records),
            name=display.get("name"),
            symbol=display.get("symbol"),
            decimals=decimals if isinstance(decimals, int) and not isinstance(decimals, bool) else 0,
            utxos=[UtxoRef(r.txid, r.output_index, r.amount) for r in records],
        )
