"""Solana JSON-RPC ledger reader over httpx."""

from __future__ import annotations

import base64
import itertools
from typing import Any

import httpx
import structlog

from chainwatch.core.clock import SYSTEM_CLOCK, Clock
from chainwatch.core.config import LedgerConfig
from chainwatch.ledger.exceptions import (
    LedgerConnectionError,
    LedgerParseError,
    LedgerRpcError,
)
from chainwatch.ledger.reader import (
    LedgerReader,
    ParsedInstruction,
    ParsedTransaction,
    SignatureInfo,
)

logger = structlog.stdlib.get_logger()


def _parse_account_keys(message: dict[str, Any]) -> list[str]:
    """Account keys arrive as plain strings or, with jsonParsed, as objects."""
    keys: list[str] = []
    for key in message.get("accountKeys") or []:
        if isinstance(key, dict):
            keys.append(str(key.get("pubkey", "")))
        else:
            keys.append(str(key))
    return keys


def _parse_instruction(raw: dict[str, Any]) -> ParsedInstruction:
    parsed = raw.get("parsed")
    if isinstance(parsed, dict):
        info = parsed.get("info")
        return ParsedInstruction(
            program_id=str(raw.get("programId", "")),
            kind=str(parsed["type"]) if parsed.get("type") is not None else None,
            info=dict(info) if isinstance(info, dict) else {},
        )
    return ParsedInstruction(program_id=str(raw.get("programId", "")))


def _parse_transaction(signature: str, result: dict[str, Any]) -> ParsedTransaction:
    """Convert a ``getTransaction`` (jsonParsed) result into a ParsedTransaction.

    Expected structure::

        {
            "slot": 1234,
            "blockTime": 1700000000,
            "meta": {"err": null, "fee": 5000,
                     "preBalances": [...], "postBalances": [...]},
            "transaction": {
                "signatures": ["5h..."],
                "message": {
                    "accountKeys": [{"pubkey": "..."}, ...],
                    "instructions": [
                        {"programId": "...", "parsed": {"type": "...", "info": {...}}}
                    ]
                }
            }
        }
    """
    try:
        meta = result.get("meta") or {}
        message = result["transaction"]["message"]
        instructions = [
            _parse_instruction(ix)
            for ix in message.get("instructions") or []
            if isinstance(ix, dict)
        ]
        return ParsedTransaction(
            signature=signature,
            slot=int(result.get("slot", 0)),
            block_time=result.get("blockTime"),
            instructions=instructions,
            account_keys=_parse_account_keys(message),
            pre_balances=[int(b) for b in meta.get("preBalances") or []],
            post_balances=[int(b) for b in meta.get("postBalances") or []],
            fee=meta.get("fee"),
            err=meta.get("err"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise LedgerParseError(f"Malformed transaction {signature}: {exc}") from exc


class SolanaRpcReader(LedgerReader):
    """LedgerReader backed by a Solana JSON-RPC endpoint.

    Transport failures are retried ``max_retries`` times with
    ``retry_delay_ms`` between attempts; JSON-RPC error objects are not.

    Usage::

        reader = SolanaRpcReader(settings.ledger)
        height = await reader.current_height()
        await reader.close()
    """

    def __init__(
        self,
        config: LedgerConfig,
        http: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._http = http
        self._clock = clock or SYSTEM_CLOCK
        self._ids = itertools.count(1)

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.request_timeout_secs),
            )
        return self._http

    async def close(self) -> None:
        """Close the httpx async client."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _call(self, method: str, params: list[Any] | None = None) -> Any:
        attempts = self._config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await self._call_once(method, params or [])
            except LedgerConnectionError as exc:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "rpc_retry",
                    method=method,
                    attempt=attempt,
                    max_retries=self._config.max_retries,
                    error=str(exc),
                )
                await self._clock.sleep(self._config.retry_delay_ms / 1000.0)
        raise LedgerConnectionError(f"{method} failed")  # pragma: no cover

    async def _call_once(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self._client().post(self._config.rpc_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status >= 500:
                raise LedgerConnectionError(f"RPC {method} returned {status}") from exc
            raise LedgerRpcError(method, status, exc.response.text or "request rejected") from exc
        except httpx.HTTPError as exc:
            raise LedgerConnectionError(f"RPC {method} request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise LedgerParseError(f"RPC {method} returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise LedgerParseError(f"RPC {method} returned non-object")

        error = body.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise LedgerRpcError(
                    method,
                    int(error.get("code", 0)),
                    str(error.get("message", "")),
                )
            raise LedgerRpcError(method, 0, str(error))

        return body.get("result")

    # ── Poller calls ─────────────────────────────────────────────

    async def current_height(self) -> int:
        result = await self._call("getSlot", [{"commitment": self._config.commitment}])
        if not isinstance(result, int):
            raise LedgerParseError(f"getSlot returned {result!r}")
        return result

    async def signatures_for_address(
        self, address: str, since: int, limit: int,
    ) -> list[SignatureInfo]:
        result = await self._call(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self._config.commitment}],
        )
        if not isinstance(result, list):
            raise LedgerParseError("getSignaturesForAddress returned non-list")

        infos: list[SignatureInfo] = []
        for entry in result:
            if not isinstance(entry, dict) or "signature" not in entry:
                continue
            slot = int(entry.get("slot", 0))
            if slot < since:
                continue
            infos.append(SignatureInfo(
                signature=str(entry["signature"]),
                slot=slot,
                block_time=entry.get("blockTime"),
                err=entry.get("err"),
            ))
        return infos

    async def parsed_transaction(self, signature: str) -> ParsedTransaction | None:
        result = await self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self._config.commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            return None
        if not isinstance(result, dict):
            raise LedgerParseError(f"getTransaction returned non-object for {signature}")
        return _parse_transaction(signature, result)

    # ── Health calls ─────────────────────────────────────────────

    async def version(self) -> dict[str, Any]:
        result = await self._call("getVersion")
        if not isinstance(result, dict):
            raise LedgerParseError("getVersion returned non-object")
        return result

    async def account_size(self, address: str) -> int | None:
        result = await self._call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self._config.commitment}],
        )
        value = result.get("value") if isinstance(result, dict) else None
        if value is None:
            return None
        if "space" in value:
            return int(value["space"])
        data = value.get("data")
        if isinstance(data, list) and data:
            try:
                return len(base64.b64decode(data[0]))
            except ValueError as exc:
                raise LedgerParseError(f"Undecodable account data for {address}") from exc
        return 0

    async def cluster_nodes(self) -> list[dict[str, Any]]:
        result = await self._call("getClusterNodes")
        if not isinstance(result, list):
            raise LedgerParseError("getClusterNodes returned non-list")
        return [node for node in result if isinstance(node, dict)]
