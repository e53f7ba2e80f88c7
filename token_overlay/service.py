"""Overlay service wiring admission, the index and lookups together."""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .admission import AdmissionEngine, AdmissionResult
from .config import ConfigurationError, IndexerConfig
from .index import EvictOutput, IngestOutcome, MarkSpent, TokenIndex
from .models import TransactionOutput
from .query import QueryEngine
from .rpc_client import NodeRPCClient
from .store import SQLiteTokenStore, TokenStore
from .validator import FieldValidator

logger = logging.getLogger(__name__)


def generate_token_id(seed: bytes | str, nonce: bytes | str) -> str:
    """Derive a 32-byte token id as the hex double SHA-256 of ``seed || nonce``."""

    def as_bytes(value: bytes | str) -> bytes:
        return value.encode("utf-8") if isinstance(value, str) else bytes(value)

    data = as_bytes(seed) + as_bytes(nonce)
    return hashlib.sha256(hashlib.sha256(data).digest()).hexdigest()


class TokenOverlayService:
    """Entry points for the outputs provider and the spent/evicted notifiers."""

    def __init__(
        self,
        config: IndexerConfig,
        store: Optional[TokenStore] = None,
        rpc: Optional[NodeRPCClient] = None,
    ) -> None:
        self.config = config
        self.index = TokenIndex(store or SQLiteTokenStore(config.database_path))
        self.engine = AdmissionEngine(
            FieldValidator(
                protocol_marker=config.protocol_marker,
                public_key_length=config.public_key_length,
                strict_key_points=config.strict_key_points,
                token_allowlist=config.token_allowlist,
            ),
            layouts=config.layouts,
        )
        self.queries = QueryEngine(self.index, default_history_limit=config.history_limit)
        if rpc is None and config.rpc is not None:
            rpc = NodeRPCClient(config.rpc)
        self.rpc = rpc

    async def start(self) -> None:
        await self.index.open()
        logger.info("Token overlay started (layouts: %s)", ", ".join(layout.value for layout in self.engine.layouts))

    async def stop(self) -> None:
        await self.index.close()

    async def __aenter__(self) -> "TokenOverlayService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def handle_transaction(
        self, txid: str, outputs: Sequence[TransactionOutput]
    ) -> Dict[int, IngestOutcome]:
        """Admit every token output of ``txid``; returns outcomes by output index."""

        result: AdmissionResult = self.engine.identify_admissible(outputs, txid=txid)
        return await self.index.admit_transaction(txid, outputs, result)

    async def handle_txid(self, txid: str) -> Dict[int, IngestOutcome]:
        """Fetch ``txid`` from the configured node and admit its token outputs."""

        if self.rpc is None:
            raise ConfigurationError("No RPC outputs provider configured")
        outputs = await asyncio.to_thread(self.rpc.get_transaction_outputs, txid)
        return await self.handle_transaction(txid, outputs)

    async def handle_spent(self, txid: str, output_index: int) -> IngestOutcome:
        return await self.index.ingest(MarkSpent(txid, output_index))

    async def handle_evicted(self, txid: str, output_index: int) -> IngestOutcome:
        return await self.index.ingest(EvictOutput(txid, output_index))

    async def lookup(self, question: Mapping[str, Any]) -> List[Dict[str, Any]]:
        return await self.queries.lookup(question)
