"""
On-chain execution backend adapters.

The execution engine talks to the wallet through the narrow
ExecutionBackend interface. JsonRpcExecutionBackend forwards each call as a
JSON-RPC 2.0 `tools/call` request to an execution gateway over HTTP.
"""

import itertools
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError

from trader.config import Config
from trader.errors import ExecutionError, InsufficientBalanceError
from trader.utils import safe_float

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TradeOrder:
    """Order handed to the backend for submission."""
    market_id: str
    outcome: str
    outcome_index: int
    side: str
    amount: float
    price: Optional[float] = None


@dataclass(frozen=True)
class TransactionStatus:
    """
    Backend view of a submitted transaction.

    Attributes:
        confirmed: True once the required confirmations are reached
        error: Backend-reported failure, if any
        confirmations: Confirmations seen so far
        filled_amount: Amount actually filled
        execution_price: Average fill price
    """
    confirmed: bool
    error: Optional[str] = None
    confirmations: int = 0
    filled_amount: Optional[float] = None
    execution_price: Optional[float] = None


class ExecutionBackend:
    """Interface implemented by execution backends."""

    def get_balance(self, token: str) -> float:
        raise NotImplementedError

    def approve(self, spender: str, amount: float) -> None:
        raise NotImplementedError

    def submit(self, order: TradeOrder) -> str:
        raise NotImplementedError

    def get_status(self, tx_ref: str) -> TransactionStatus:
        raise NotImplementedError


class JsonRpcExecutionBackend(ExecutionBackend):
    """
    Execution gateway client speaking JSON-RPC 2.0 over HTTP.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        contract_address: Optional[str] = None,
        timeout: Optional[float] = None,
        required_confirmations: int = 2
    ):
        """
        Initialize the client.

        Args:
            url: Gateway URL. If None, uses Config.EXECUTION_BACKEND_URL
            api_key: Bearer token for the gateway. If None, uses Config.EXECUTION_BACKEND_API_KEY
            contract_address: Exchange contract. If None, uses Config.EXCHANGE_CONTRACT_ADDRESS
            timeout: Request timeout in seconds. If None, uses Config.API_TIMEOUT
            required_confirmations: Confirmations needed to treat a transaction as final
        """
        self.url = url or Config.EXECUTION_BACKEND_URL
        self.api_key = api_key if api_key is not None else Config.EXECUTION_BACKEND_API_KEY
        self.contract_address = contract_address or Config.EXCHANGE_CONTRACT_ADDRESS
        self.timeout = timeout or Config.API_TIMEOUT
        self.required_confirmations = required_confirmations
        self._ids = itertools.count(1)

        if not self.url:
            raise ValueError("EXECUTION_BACKEND_URL is required for live execution")

    def get_balance(self, token: str) -> float:
        result = self._call_tool("get_balance", {"token": token})
        balance = result.get("balance") if isinstance(result, dict) else result
        return safe_float(balance, 0.0)

    def approve(self, spender: str, amount: float) -> None:
        self._call_tool("approve_token_spending", {"spender": spender, "amount": str(amount)})

    def submit(self, order: TradeOrder) -> str:
        result = self._call_tool(
            "write_contract",
            {
                "contract_address": self.contract_address,
                "function_name": "buy" if order.side == "BUY" else "sell",
                "args": {
                    "market_id": order.market_id,
                    "outcome_index": order.outcome_index,
                    "amount": str(order.amount),
                    "max_price": order.price,
                },
            },
        )
        tx_ref = result.get("transaction_hash") if isinstance(result, dict) else result
        if not tx_ref:
            raise ExecutionError("Backend did not return a transaction hash")
        return str(tx_ref)

    def get_status(self, tx_ref: str) -> TransactionStatus:
        result = self._call_tool("get_transaction", {"hash": tx_ref})
        if not isinstance(result, dict):
            return TransactionStatus(confirmed=False)

        if result.get("status") in ("failed", "reverted") or result.get("error"):
            return TransactionStatus(confirmed=False, error=str(result.get("error") or result.get("status")))

        confirmations = int(safe_float(result.get("confirmations"), 0))
        return TransactionStatus(
            confirmed=confirmations >= self.required_confirmations,
            confirmations=confirmations,
            filled_amount=safe_float(result.get("filled_amount"), 0.0) if result.get("filled_amount") is not None else None,
            execution_price=safe_float(result.get("price"), 0.0) if result.get("price") is not None else None,
        )

    def _call_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        }
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()

        except Timeout:
            raise ExecutionError(f"{name} timed out after {self.timeout}s")

        except ConnectionError as e:
            raise ExecutionError(f"{name} connection error: {e}")

        except RequestException as e:
            body = e.response.text[:300] if getattr(e, "response", None) is not None else ""
            raise ExecutionError(f"{name} request failed: {e} {body}".strip())

        except ValueError as e:
            raise ExecutionError(f"{name} returned invalid JSON: {e}")

        if "error" in data and data["error"]:
            message = data["error"].get("message") if isinstance(data["error"], dict) else str(data["error"])
            _raise_backend_error(name, message or "unknown error")

        result = data.get("result")
        if isinstance(result, dict) and result.get("isError"):
            _raise_backend_error(name, _tool_text(result) or "tool error")

        return _unwrap_tool_result(result)


def _raise_backend_error(tool: str, message: str) -> None:
    lowered = message.lower()
    if "insufficient" in lowered or "unauthorized" in lowered:
        raise InsufficientBalanceError(f"{tool}: {message}")
    raise ExecutionError(f"{tool}: {message}")


def _tool_text(result: dict) -> str:
    content = result.get("content") or []
    return " ".join(item.get("text", "") for item in content if isinstance(item, dict)).strip()


def _unwrap_tool_result(result: Any) -> Any:
    """Tool results arrive as text content blocks that usually hold JSON."""
    if not isinstance(result, dict) or "content" not in result:
        return result
    text = _tool_text(result)
    try:
        return json.loads(text)
    except ValueError:
        return text
