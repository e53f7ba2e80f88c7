"""JSON-RPC outputs provider backed by a Bitcoin-style node.

The overlay does not parse raw transactions itself. This client asks a node
for the verbose form of a transaction and hands back the locking script and
value of each output, which is all admission needs. No consensus logic is
implemented here; the client forwards requests and surfaces errors clearly.
"""

from __future__ import annotations

import itertools
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence

import requests
from requests import RequestException, Response

from .config import RPCConfig
from .models import TransactionOutput

logger = logging.getLogger(__name__)

UNITS_PER_COIN = Decimal(100_000_000)


class RPCError(RuntimeError):
    """Raised when the node responds with an RPC error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class RPCTransportError(RuntimeError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def coins_to_units(value: Any) -> int:
    """Convert a node-reported coin amount to integer value units."""

    try:
        units = Decimal(str(value)) * UNITS_PER_COIN
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid output value: {value!r}") from exc
    if units < 0 or units != units.to_integral_value():
        raise ValueError(f"Output value {value!r} is not a whole number of units")
    return int(units)


def _error_from_reply(reply: Any) -> RPCError | None:
    if isinstance(reply, dict) and reply.get("error"):
        error = reply["error"]
        return RPCError(error.get("code", -1), error.get("message", "unknown"))
    return None


class NodeRPCClient:
    """Thin JSON-RPC client supplying transaction outputs to the overlay."""

    def __init__(self, config: RPCConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()
        self._url = config.base_url
        self._request_ids = itertools.count(1)

    def call(self, method: str, params: Optional[Sequence[Any]] = None) -> Any:
        """Send one JSON-RPC request and return its ``result`` member."""

        request = {"jsonrpc": "1.0", "id": next(self._request_ids), "method": method, "params": list(params or [])}
        logger.debug("RPC %s #%s %s", method, request["id"], request["params"])
        response = self._post(request)
        if not response.ok:
            self._raise_for_status(response)
        try:
            reply = response.json()
        except ValueError as exc:
            logger.debug("Unparseable RPC reply to %s: %s", method, response.text, exc_info=True)
            raise RPCTransportError(f"Node returned malformed JSON for {method}") from exc
        error = _error_from_reply(reply)
        if error is not None:
            raise error
        return reply.get("result")

    def _post(self, request: Dict[str, Any]) -> Response:
        try:
            return self._session.post(
                self._url,
                data=json.dumps(request),
                headers={"content-type": "application/json"},
                auth=(self.config.user, self.config.password),
                timeout=30,
            )
        except RequestException as exc:
            logger.error("Node at %s unreachable: %s", self._url, exc, exc_info=logger.isEnabledFor(logging.DEBUG))
            raise RPCTransportError(
                f"Could not reach the node at {self._url}. Check the TOKEN_OVERLAY_RPC_* "
                "variables or the 'rpc' section of ~/.token-overlay.yaml."
            ) from exc

    def _raise_for_status(self, response: Response) -> None:
        # Nodes report JSON-RPC errors as HTTP 500 with a structured body.
        try:
            error = _error_from_reply(response.json())
        except ValueError:
            error = None
        if error is not None:
            raise error

        logger.error("Node at %s answered HTTP %s", self._url, response.status_code)
        if response.status_code == 401:
            raise RPCTransportError(
                "Unauthorized (401). Check TOKEN_OVERLAY_RPC_USER and TOKEN_OVERLAY_RPC_PASSWORD.",
                status_code=response.status_code,
            )
        raise RPCTransportError(
            f"RPC server returned HTTP {response.status_code}", status_code=response.status_code
        )

    def getrawtransaction(self, txid: str, verbose: bool = False) -> Any:
        return self.call("getrawtransaction", [txid, int(verbose)])

    def get_transaction_outputs(self, txid: str) -> List[TransactionOutput]:
        """Return the outputs of ``txid`` in output-index order."""

        decoded = self.getrawtransaction(txid, verbose=True)
        if not isinstance(decoded, dict):
            raise RPCTransportError(f"Unexpected getrawtransaction result for {txid}")
        vouts: List[Dict[str, Any]] = sorted(
            decoded.get("vout") or [], key=lambda vout: int(vout.get("n", 0))
        )
        return [self._vout_to_output(txid, vout) for vout in vouts]

    @staticmethod
    def _vout_to_output(txid: str, vout: Dict[str, Any]) -> TransactionOutput:
        script_hex = (vout.get("scriptPubKey") or {}).get("hex") or ""
        try:
            script = bytes.fromhex(script_hex)
        except ValueError:
            logger.debug("Non-hex script in %s:%s", txid, vout.get("n"))
            script = b""
        return TransactionOutput(locking_script=script, value_units=coins_to_units(vout.get("value", 0)))
