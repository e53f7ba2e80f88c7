"""Lifecycle index over admitted token outputs.

Records move ``unspent -> spent`` once and may be evicted from either state.
All state changes arrive as commands through :meth:`TokenIndex.ingest`, which
turns the idempotent cases (re-admission, unknown spend targets) into
outcomes instead of errors so redelivered events are harmless.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from .admission import AdmissionResult
from .errors import DuplicateOutputError, RecordNotFoundError
from .models import TokenBalance, TokenRecord, TransactionOutput
from .store import TokenStore

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 2**63 - 1


@dataclass(frozen=True)
class AdmitOutput:
    record: TokenRecord


@dataclass(frozen=True)
class MarkSpent:
    txid: str
    output_index: int


@dataclass(frozen=True)
class EvictOutput:
    txid: str
    output_index: int


IndexCommand = Union[AdmitOutput, MarkSpent, EvictOutput]


class IngestOutcome(str, Enum):
    ADMITTED = "admitted"
    DUPLICATE = "duplicate"
    SPENT = "spent"
    EVICTED = "evicted"
    NOT_FOUND = "not_found"


class TokenIndex:
    """Queryable view of admitted, spent and evicted token outputs."""

    def __init__(self, store: TokenStore) -> None:
        self.store = store

    async def open(self) -> None:
        await self.store.open()

    async def close(self) -> None:
        await self.store.close()

    async def __aenter__(self) -> "TokenIndex":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Commands ---------------------------------------------------------------

    async def ingest(self, command: IndexCommand) -> IngestOutcome:
        """Apply one lifecycle command, absorbing duplicate and missing targets."""

        if isinstance(command, AdmitOutput):
            try:
                await self.admit(command.record)
            except DuplicateOutputError as exc:
                logger.warning("Ignoring re-admission of %s:%d", exc.txid, exc.output_index)
                return IngestOutcome.DUPLICATE
            return IngestOutcome.ADMITTED

        if isinstance(command, MarkSpent):
            handler, outcome = self.mark_spent, IngestOutcome.SPENT
        elif isinstance(command, EvictOutput):
            handler, outcome = self.evict, IngestOutcome.EVICTED
        else:
            raise TypeError(f"Unsupported index command: {command!r}")

        try:
            await handler(command.txid, command.output_index)
        except RecordNotFoundError as exc:
            logger.warning("%s for unknown output %s:%d", outcome.value, exc.txid, exc.output_index)
            return IngestOutcome.NOT_FOUND
        return outcome

    async def admit(self, record: TokenRecord) -> TokenRecord:
        if record.amount <= 0:
            raise ValueError(f"Token output {record.txid}:{record.output_index} has no amount")
        stored = record.fresh()
        await self.store.insert(stored)
        logger.info(
            "Token admitted: %s amount=%d at %s:%d",
            stored.token_id,
            stored.amount,
            stored.txid,
            stored.output_index,
        )
        return stored

    async def admit_transaction(
        self,
        txid: str,
        outputs: Sequence[TransactionOutput],
        result: AdmissionResult,
    ) -> Dict[int, IngestOutcome]:
        """Admit every output selected by an admission pass over ``txid``."""

        outcomes: Dict[int, IngestOutcome] = {}
        for record in result.records(txid, outputs):
            outcomes[record.output_index] = await self.ingest(AdmitOutput(record))
        return outcomes

    async def mark_spent(self, txid: str, output_index: int) -> None:
        if not await self.store.mark_spent(txid.lower(), output_index):
            raise RecordNotFoundError(txid, output_index)
        logger.info("Token spent: %s:%d", txid, output_index)

    async def evict(self, txid: str, output_index: int) -> None:
        if not await self.store.delete(txid.lower(), output_index):
            raise RecordNotFoundError(txid, output_index)
        logger.info("Token evicted: %s:%d", txid, output_index)

    # Reads ------------------------------------------------------------------

    async def get(self, txid: str, output_index: int) -> Optional[TokenRecord]:
        return await self.store.get(txid.lower(), output_index)

    async def unspent_utxos(self, token_id: str) -> List[TokenRecord]:
        return await self.store.find_unspent(token_id.lower())

    async def balance_of(self, token_id: str) -> TokenBalance:
        token_id = token_id.lower()
        return TokenBalance.from_records(token_id, await self.store.find_unspent(token_id))

    async def all_balances(self) -> List[TokenBalance]:
        grouped: "OrderedDict[str, List[TokenRecord]]" = OrderedDict()
        for record in await self.store.find_all_unspent():
            grouped.setdefault(record.token_id, []).append(record)
        return [TokenBalance.from_records(token_id, records) for token_id, records in grouped.items()]

    async def history(self, token_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[TokenRecord]:
        if limit <= 0:
            return []
        return await self.store.find_history(token_id.lower(), min(limit, MAX_HISTORY_LIMIT))


__all__ = [
    "AdmitOutput",
    "EvictOutput",
    "IndexCommand",
    "IngestOutcome",
    "MarkSpent",
    "TokenIndex",
]
