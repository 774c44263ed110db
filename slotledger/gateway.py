"""
Ledger gateway: read-only queries against the external value-transfer ledger.

The core depends on two operations only, ``balance_of`` and
``transaction_by_hash``. ``EtherscanGateway`` implements them over the
Etherscan HTTP API. Any network, timeout, HTTP or payload problem surfaces as
``GatewayUnavailableError`` so callers can treat it as "not yet confirmed".
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

WEI_PER_ETHER = Decimal(10) ** 18


class GatewayUnavailableError(Exception):
    pass


@dataclass(frozen=True)
class LedgerTransaction:
    hash: str
    recipient: Optional[str]
    value: Decimal


def wei_to_ether(wei: int) -> Decimal:
    return Decimal(wei) / WEI_PER_ETHER


def ether_to_wei(ether: Decimal) -> int:
    return int(Decimal(ether) * WEI_PER_ETHER)


class LedgerGateway:
    def balance_of(self, address: str) -> Decimal:
        raise NotImplementedError

    def transaction_by_hash(self, tx_hash: str) -> Optional[LedgerTransaction]:
        raise NotImplementedError


class EtherscanGateway(LedgerGateway):
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.etherscan.io/v2/api",
        chain_id: int = 1,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.chain_id = chain_id
        self.client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self.client.close()

    def balance_of(self, address: str) -> Decimal:
        payload = self._get({
            "module": "account",
            "action": "balance",
            "address": address,
            "tag": "latest",
        })
        if payload.get("status") != "1":
            raise GatewayUnavailableError(
                f"Balance lookup failed: {payload.get('message')} ({payload.get('result')})"
            )
        try:
            return wei_to_ether(int(payload["result"]))
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayUnavailableError(f"Malformed balance result: {payload.get('result')!r}") from e

    def transaction_by_hash(self, tx_hash: str) -> Optional[LedgerTransaction]:
        payload = self._get({
            "module": "proxy",
            "action": "eth_getTransactionByHash",
            "txhash": tx_hash,
        })
        if "error" in payload:
            raise GatewayUnavailableError(f"Transaction lookup failed: {payload['error']}")
        if payload.get("status") == "0":
            raise GatewayUnavailableError(
                f"Transaction lookup failed: {payload.get('message')} ({payload.get('result')})"
            )

        tx = payload.get("result")
        if tx is None:
            return None
        if not isinstance(tx, dict):
            raise GatewayUnavailableError(f"Malformed transaction result: {tx!r}")
        try:
            value = wei_to_ether(int(tx["value"], 16))
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise GatewayUnavailableError(f"Malformed transaction value: {tx.get('value')!r}") from e

        return LedgerTransaction(hash=tx.get("hash") or tx_hash, recipient=tx.get("to"), value=value)

    def _get(self, params: dict) -> dict:
        query = {"chainid": self.chain_id, **params, "apikey": self.api_key}
        try:
            response = self.client.get(self.base_url, params=query)
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as e:
            raise GatewayUnavailableError(f"Ledger request timed out: {params['action']}") from e
        except httpx.HTTPError as e:
            raise GatewayUnavailableError(f"Ledger request failed: {e}") from e
        except ValueError as e:
            raise GatewayUnavailableError("Ledger response is not valid JSON") from e

        if not isinstance(payload, dict):
            raise GatewayUnavailableError(f"Unexpected ledger response: {payload!r}")
        logger.debug("Ledger %s/%s -> %s", params["module"], params["action"], payload.get("message", "ok"))
        return payload
