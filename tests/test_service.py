from __future__ import annotations

import asyncio
import hashlib
import json
from dataclasses import dataclass, field

import pytest

from token_overlay.config import ConfigurationError, IndexerConfig
from token_overlay.index import IngestOutcome
from token_overlay.models import LayoutVersion, TransactionOutput
from token_overlay.script_codec import encode_pushdrop
from token_overlay.service import TokenOverlayService, generate_token_id
from token_overlay.validator import encode_amount

TOKEN_ID = bytes.fromhex(generate_token_id(b"mint-seed", b"\x00\x01"))
OWNER = bytes.fromhex("02" + "ab" * 32)
LOCKING_KEY = bytes.fromhex("03" + "cd" * 32)
TXID = "ee" * 32


def _output(amount: int, layout: LayoutVersion = LayoutVersion.B, metadata: dict | None = None) -> TransactionOutput:
    fields = [b"TOKEN", TOKEN_ID, encode_amount(amount), OWNER]
    if metadata is not None:
        fields.append(json.dumps(metadata).encode())
    return TransactionOutput(encode_pushdrop(LOCKING_KEY, fields, layout=layout), 1)


@dataclass
class StubRPC:
    outputs: list
    calls: list = field(default_factory=list)

    def get_transaction_outputs(self, txid: str) -> list:
        self.calls.append(txid)
        return self.outputs


def _config(**kwargs) -> IndexerConfig:
    return IndexerConfig(database_path=":memory:", **kwargs)


def test_generate_token_id_is_double_sha256() -> None:
    assert generate_token_id(b"", b"") == "5df6e0e2761359d30a8275058e299fcc0381534545f55cf43e41983f5d4c9456"
    expected = hashlib.sha256(hashlib.sha256(b"seed7").digest()).hexdigest()
    assert generate_token_id("seed", "7") == expected
    assert len(TOKEN_ID) == 32


def test_transaction_lifecycle_through_the_service() -> None:
    async def scenario() -> None:
        async with TokenOverlayService(_config()) as service:
            outcomes = await service.handle_transaction(
                TXID,
                [
                    _output(700, metadata={"name": "Goose", "symbol": "GOOSE", "decimals": 0}),
                    TransactionOutput(b"\x6a\x04junk", 0),
                    _output(300, layout=LayoutVersion.A),
                ],
            )
            assert outcomes == {0: IngestOutcome.ADMITTED, 2: IngestOutcome.ADMITTED}

            again = await service.handle_transaction(TXID, [_output(700)])
            assert again == {0: IngestOutcome.DUPLICATE}

            balances = await service.lookup({"type": "balances"})
            assert balances[0]["totalAmount"] == 1000
            assert balances[0]["symbol"] == "GOOSE"

            assert await service.handle_spent(TXID, 2) is IngestOutcome.SPENT
            rows = await service.lookup({"type": "balance", "tokenId": TOKEN_ID.hex()})
            assert [row["amount"] for row in rows] == [700]

            assert await service.handle_evicted(TXID, 0) is IngestOutcome.EVICTED
            assert await service.handle_evicted(TXID, 0) is IngestOutcome.NOT_FOUND
            assert await service.lookup({"type": "balances"}) == []
            history = await service.lookup({"type": "history", "tokenId": TOKEN_ID.hex()})
            assert [(row["outputIndex"], row["spent"]) for row in history] == [(2, True)]

    asyncio.run(scenario())


def test_configured_layouts_and_allowlist_apply() -> None:
    async def scenario() -> None:
        config = _config(layouts=[LayoutVersion.A], token_allowlist=[TOKEN_ID.hex()])
        async with TokenOverlayService(config) as service:
            outcomes = await service.handle_transaction(TXID, [_output(5), _output(6, layout=LayoutVersion.A)])
            assert outcomes == {1: IngestOutcome.ADMITTED}

    asyncio.run(scenario())


def test_handle_txid_fetches_outputs_from_rpc() -> None:
    rpc = StubRPC(outputs=[_output(42)])

    async def scenario() -> dict:
        async with TokenOverlayService(_config(), rpc=rpc) as service:
            return await service.handle_txid(TXID)

    assert asyncio.run(scenario()) == {0: IngestOutcome.ADMITTED}
    assert rpc.calls == [TXID]


def test_handle_txid_without_rpc_is_a_configuration_error() -> None:
    async def scenario() -> None:
        async with TokenOverlayService(_config()) as service:
            assert service.rpc is None
            await service.handle_txid(TXID)

    with pytest.raises(ConfigurationError):
        asyncio.run(scenario())
