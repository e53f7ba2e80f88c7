"""Lookup questions answered from the token index."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping

from .errors import StorageError, UnsupportedQueryError
from .index import DEFAULT_HISTORY_LIMIT, TokenIndex

logger = logging.getLogger(__name__)

Answer = List[Dict[str, Any]]

DOCUMENTATION = """# Token Lookup

## Query Types

### Balance
Unspent outputs of one token with its display metadata:
`{"type": "balance", "tokenId": "<64 hex chars>"}`

### Balances
One summary per token with unspent outputs:
`{"type": "balances"}`

### History
Spent and unspent outputs of one token, newest first:
`{"type": "history", "tokenId": "<64 hex chars>", "limit": 50}`

### UTXOs
Unspent outputs with the script and value needed to spend them:
`{"type": "utxos", "tokenId": "<64 hex chars>"}`
"""

SERVICE_METADATA = {
    "name": "Token Lookup",
    "shortDescription": "Query token balances and transaction history",
    "version": "0.1.0",
}


def _require_token_id(question: Mapping[str, Any]) -> str:
    token_id = question.get("tokenId")
    if not isinstance(token_id, str) or not token_id:
        raise UnsupportedQueryError(f"{question.get('type')} query requires a tokenId")
    return token_id


class QueryEngine:
    """Dispatch lookup questions to :class:`TokenIndex` projections.

    Storage failures are logged and answered with an empty list so a broken
    read path never takes the caller down; malformed questions raise
    :class:`UnsupportedQueryError`.
    """

    def __init__(self, index: TokenIndex, default_history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.index = index
        self.default_history_limit = default_history_limit
        self._handlers: Dict[str, Callable[[Mapping[str, Any]], Awaitable[Answer]]] = {
            "balance": self._balance,
            "balances": self._balances,
            "history": self._history,
            "utxos": self._utxos,
        }

    async def lookup(self, question: Mapping[str, Any]) -> Answer:
        if not isinstance(question, Mapping):
            raise UnsupportedQueryError(f"Lookup question must be a mapping, got {type(question).__name__}")
        query_type = question.get("type")
        handler = self._handlers.get(query_type) if isinstance(query_type, str) else None
        if handler is None:
            raise UnsupportedQueryError(f"Unknown query type: {query_type!r}")
        try:
            return await handler(question)
        except StorageError:
            logger.exception("Lookup %s failed in the token store", query_type)
            return []

    @staticmethod
    def documentation() -> str:
        return DOCUMENTATION

    @staticmethod
    def metadata() -> Dict[str, str]:
        """Name, short description and version advertised to service discovery."""

        return dict(SERVICE_METADATA)

    async def _balance(self, question: Mapping[str, Any]) -> Answer:
        balance = await self.index.balance_of(_require_token_id(question))
        return [
            {
                "txid": utxo.txid,
                "outputIndex": utxo.output_index,
                "amount": utxo.amount,
                "tokenId": balance.token_id,
                "name": balance.name,
                "symbol": balance.symbol,
                "decimals": balance.decimals,
            }
            for utxo in balance.utxos
        ]

    async def _balances(self, question: Mapping[str, Any]) -> Answer:
        balances = await self.index.all_balances()
        logger.debug("Balances lookup found %d tokens", len(balances))
        return [
            {
                "tokenId": balance.token_id,
                "name": balance.name,
                "symbol": balance.symbol,
                "decimals": balance.decimals,
                "totalAmount": balance.total_amount,
                "utxoCount": len(balance.utxos),
            }
            for balance in balances
        ]

    async def _history(self, question: Mapping[str, Any]) -> Answer:
        token_id = _require_token_id(question)
        limit = question.get("limit", self.default_history_limit)
        if limit is None:
            limit = self.default_history_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
            raise UnsupportedQueryError(f"history limit must be a non-negative integer, got {limit!r}")
        records = await self.index.history(token_id, limit)
        return [
            {
                "txid": record.txid,
                "outputIndex": record.output_index,
                "tokenId": record.token_id,
                "amount": record.amount,
                "spent": record.spent,
                "createdAt": record.admitted_at.isoformat(),
            }
            for record in records
        ]

    async def _utxos(self, question: Mapping[str, Any]) -> Answer:
        records = await self.index.unspent_utxos(_require_token_id(question))
        return [
            {
                "txid": record.txid,
                "outputIndex": record.output_index,
                "amount": record.amount,
                "lockingScript": record.locking_script,
                "satoshis": record.value_units,
            }
            for record in records
        ]
