from __future__ import annotations

import asyncio
from datetime import datetime

import pytest

from token_overlay.errors import StorageError, UnsupportedQueryError
from token_overlay.index import TokenIndex
from token_overlay.models import TokenRecord
from token_overlay.query import QueryEngine
from token_overlay.store import SQLiteTokenStore, TokenStore

TOKEN = "42" * 32


def _record(txid: str, amount: int, **kwargs) -> TokenRecord:
    return TokenRecord(
        txid=txid,
        output_index=0,
        token_id=TOKEN,
        amount=amount,
        owner_key="02" + "ab" * 32,
        locking_script="deadbeef",
        value_units=546,
        **kwargs,
    )


class BrokenStore(TokenStore):
    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def find_unspent(self, token_id: str):
        raise StorageError("disk on fire")

    async def find_all_unspent(self):
        raise StorageError("disk on fire")

    async def find_history(self, token_id: str, limit: int):
        raise StorageError("disk on fire")


def _ask(question, records=()) -> list:
    async def runner() -> list:
        async with TokenIndex(SQLiteTokenStore(":memory:")) as index:
            for record in records:
                await index.admit(record)
            await index.store.mark_spent("spent", 0)
            return await QueryEngine(index).lookup(question)

    return asyncio.run(runner())


def test_balance_rows_include_display_metadata() -> None:
    rows = _ask(
        {"type": "balance", "tokenId": TOKEN},
        [_record("a1", 700, metadata={"name": "Goose", "symbol": "GOOSE", "decimals": 2}), _record("spent", 5)],
    )

    assert rows == [
        {
            "txid": "a1",
            "outputIndex": 0,
            "amount": 700,
            "tokenId": TOKEN,
            "name": "Goose",
            "symbol": "GOOSE",
            "decimals": 2,
        }
    ]


def test_balances_summarise_each_token() -> None:
    rows = _ask({"type": "balances"}, [_record("a1", 700), _record("a2", 300), _record("spent", 5)])

    assert len(rows) == 1
    assert rows[0]["tokenId"] == TOKEN
    assert rows[0]["totalAmount"] == 1000
    assert rows[0]["utxoCount"] == 2


def test_history_reports_spent_flag_and_timestamp() -> None:
    rows = _ask({"type": "history", "tokenId": TOKEN, "limit": 1}, [_record("a1", 700), _record("spent", 5)])

    assert [(row["txid"], row["spent"]) for row in rows] == [("spent", True)]
    assert datetime.fromisoformat(rows[0]["createdAt"]).tzinfo is not None


def test_utxos_return_spend_material() -> None:
    rows = _ask({"type": "utxos", "tokenId": TOKEN}, [_record("a1", 700)])

    assert rows == [
        {"txid": "a1", "outputIndex": 0, "amount": 700, "lockingScript": "deadbeef", "satoshis": 546}
    ]


@pytest.mark.parametrize(
    "question",
    [
        {"type": "mint"},
        {},
        ["balance"],
        {"type": "balance"},
        {"type": "history", "tokenId": TOKEN, "limit": -1},
        {"type": "history", "tokenId": TOKEN, "limit": True},
    ],
)
def test_unsupported_questions_raise(question) -> None:
    with pytest.raises(UnsupportedQueryError):
        _ask(question)


def test_storage_failures_become_empty_answers(caplog: pytest.LogCaptureFixture) -> None:
    engine = QueryEngine(TokenIndex(BrokenStore()))

    for question in (
        {"type": "balance", "tokenId": TOKEN},
        {"type": "balances"},
        {"type": "history", "tokenId": TOKEN},
        {"type": "utxos", "tokenId": TOKEN},
    ):
        assert asyncio.run(engine.lookup(question)) == []

    assert "Lookup balances failed" in caplog.text


def test_documentation_lists_every_query_type() -> None:
    docs = QueryEngine.documentation()

    for name in ("balance", "balances", "history", "utxos"):
        assert f'"type": "{name}"' in docs


def test_history_with_huge_limit_answers_normally() -> None:
    rows = _ask({"type": "history", "tokenId": TOKEN, "limit": 2**64}, [_record("a1", 700)])

    assert [row["txid"] for row in rows] == ["a1"]


def test_metadata_describes_the_lookup_service() -> None:
    meta = QueryEngine.metadata()

    assert meta["name"] == "Token Lookup"
    assert meta["version"]
    meta["name"] = "changed"
    assert QueryEngine.metadata()["name"] == "Token Lookup"
