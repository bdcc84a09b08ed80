# src/sorotask_keeper/registry/rpc_invoker.py

from __future__ import annotations

import asyncio
import itertools
import logging
import math
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from ..core.errors import SubmissionError
from ..core.ports import TransactionSigner
from ..tasks.task_models import InvokeResult

logger = logging.getLogger(__name__)

_SEND_REJECTED = {"ERROR", "TRY_AGAIN_LATER"}


class SorobanRpcInvoker:
    """
    JSON-RPC contract invoker: simulate -> sign -> send -> poll.

    Error mapping:
    - simulation error           -> revert detected before sending (cost 0)
    - getTransaction FAILED      -> confirmed revert (fee charged)
    - transport / JSON-RPC error -> SubmissionError (retryable)
    - still NOT_FOUND at timeout -> InvokeResult(confirmed=False)

    The signer is opaque: envelopes go in and out as encoded strings.
    """

    def __init__(
        self,
        rpc_url: str,
        signer: TransactionSigner,
        *,
        client: httpx.AsyncClient | None = None,
        confirm_timeout_seconds: float = 30.0,
        poll_interval_seconds: float = 1.0,
        request_timeout_seconds: float = 10.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not rpc_url or not rpc_url.strip():
            raise ValueError("rpc_url is required")
        self._rpc_url = rpc_url.strip()
        self._signer = signer
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout_seconds, connect=5.0),
        )
        self._poll_s = max(0.05, float(poll_interval_seconds))
        self._max_polls = max(1, math.ceil(float(confirm_timeout_seconds) / self._poll_s))
        self._sleep = sleep
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _rpc(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._client.post(self._rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as e:
            raise SubmissionError(f"{method}: {e.__class__.__name__}: {e}") from e
        except ValueError as e:
            raise SubmissionError(f"{method}: invalid JSON response") from e

        if not isinstance(body, dict):
            raise SubmissionError(f"{method}: unexpected response shape")

        err = body.get("error")
        if err:
            msg = err.get("message") if isinstance(err, dict) else str(err)
            raise SubmissionError(f"{method}: rpc error: {msg}")

        result = body.get("result")
        if not isinstance(result, dict):
            raise SubmissionError(f"{method}: missing result")
        return result

    async def invoke(self, target: str, function: str, args: list[Any]) -> InvokeResult:
        envelope = self._signer.build_invocation(target, function, list(args))

        sim = await self._rpc("simulateTransaction", {"transaction": envelope})
        if sim.get("error"):
            # The call would revert; nothing was sent, nothing was charged.
            logger.info("Simulation reverted target=%s.%s: %s", target, function, sim.get("error"))
            return InvokeResult(confirmed=True, reverted=True, cost=0)

        signed = self._signer.sign(envelope, sim)
        sent = await self._rpc("sendTransaction", {"transaction": signed})

        status = str(sent.get("status") or "")
        tx_hash = sent.get("hash")
        if status in _SEND_REJECTED or not tx_hash:
            raise SubmissionError(f"sendTransaction rejected status={status or 'n/a'}")

        logger.debug("Sent tx=%s status=%s target=%s.%s", tx_hash, status, target, function)
        fallback_cost = _to_int(sim.get("minResourceFee"))
        return await self._wait_for_confirmation(str(tx_hash), fallback_cost=fallback_cost)

    async def _wait_for_confirmation(self, tx_hash: str, *, fallback_cost: int) -> InvokeResult:
        for poll in range(self._max_polls):
            res = await self._rpc("getTransaction", {"hash": tx_hash})
            status = str(res.get("status") or "")
            cost = _to_int(res.get("feeCharged"), default=fallback_cost)

            if status == "SUCCESS":
                return InvokeResult(confirmed=True, reverted=False, cost=cost, tx_hash=tx_hash)
            if status == "FAILED":
                return InvokeResult(confirmed=True, reverted=True, cost=cost, tx_hash=tx_hash)

            if poll + 1 < self._max_polls:
                await self._sleep(self._poll_s)

        logger.info("tx=%s not confirmed after %d polls", tx_hash, self._max_polls)
        return InvokeResult(confirmed=False, reverted=False, cost=0, tx_hash=tx_hash)

    async def check_condition(self, resolver: str, args: list[Any]) -> bool:
        """
        Ask a resolver contract `check_condition(args) -> bool` via simulation.

        The task args are passed as ONE argument (a list), not spread.
        Any simulation error or undecodable result means "no".
        """
        envelope = self._signer.build_invocation(resolver, "check_condition", [list(args)])
        sim = await self._rpc("simulateTransaction", {"transaction": envelope})
        if sim.get("error"):
            logger.info("Resolver %s errored: %s", resolver, sim.get("error"))
            return False

        results = sim.get("results") or []
        try:
            return bool(self._signer.decode_bool(results[0]["xdr"]))
        except (IndexError, KeyError, TypeError, ValueError):
            logger.info("Resolver %s returned an undecodable result", resolver)
            return False


def _to_int(raw: Any, default: int = 0) -> int:
    if raw is None:
        return default
    try:
        return max(0, int(raw))
    except (TypeError, ValueError):
        return default
