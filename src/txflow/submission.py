import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx
from xrpl.asyncio.clients import AsyncJsonRpcClient
from xrpl.models.exceptions import XRPLModelException
from xrpl.models.requests import ServerState, Simulate, SubmitOnly, Tx
from xrpl.models.requests.request import Request
from xrpl.models.response import Response

import txflow.constants as C
from txflow.errors import NetworkError, StatusUnknownError, ValidationError
from txflow.models import CanonicalOperation, OutcomeEnvelope, SignedEnvelope

log = logging.getLogger("txflow.submit")

Progress = Callable[[str], None]


class OutcomeEvents:
    """Bounded queue of (event_type, payload) tuples for whoever presents results.

    Publishing never blocks the pipeline; when the queue is full the oldest
    event is dropped.
    """

    def __init__(self, maxsize: int = C.EVENT_QUEUE_SIZE) -> None:
        self.queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def publish(self, event_type: str, payload: Any) -> None:
        try:
            self.queue.put_nowait((event_type, payload))
        except asyncio.QueueFull:
            self.queue.get_nowait()
            self.dropped += 1
            log.warning("Event queue full, dropped oldest event (%s dropped so far)", self.dropped)
            self.queue.put_nowait((event_type, payload))

    async def next(self) -> tuple[str, Any]:
        return await self.queue.get()

    def drain(self) -> list[tuple[str, Any]]:
        events = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events


class SubmissionCoordinator:
    """Simulate an unsigned operation, or submit a signed one and wait for a verdict.

    Submit is never retried here. If the blob may have reached the network and
    no verdict arrives, StatusUnknownError is raised and the caller has to look
    the hash up before trying again.
    """

    def __init__(
        self,
        client: AsyncJsonRpcClient,
        *,
        events: OutcomeEvents | None = None,
        rpc_timeout: float = C.RPC_TIMEOUT,
        submit_timeout: float = C.SUBMIT_TIMEOUT,
        poll_interval: float = C.POLL_INTERVAL,
    ) -> None:
        self.client = client
        self.events = events if events is not None else OutcomeEvents()
        self.rpc_timeout = rpc_timeout
        self.submit_timeout = submit_timeout
        self.poll_interval = poll_interval

    async def _rpc(self, req: Request) -> Response:
        return await asyncio.wait_for(self.client.request(req), timeout=self.rpc_timeout)

    async def run(
        self,
        target: SignedEnvelope | CanonicalOperation,
        *,
        simulate: bool = False,
        progress: Progress | None = None,
    ) -> dict[str, Any]:
        if simulate:
            if not isinstance(target, CanonicalOperation):
                raise ValidationError("Simulation takes the unsigned operation")
            return await self.simulate(target)
        if not isinstance(target, SignedEnvelope):
            raise ValidationError("Submission takes a signed envelope")
        return await self.submit_and_wait(target, progress=progress)

    async def simulate(self, op: CanonicalOperation) -> dict[str, Any]:
        """Dry run. Nothing is signed, no sequence or ticket is consumed."""
        try:
            req = Simulate(transaction=op.to_model())
        except XRPLModelException as e:
            raise ValidationError(str(e)) from None
        try:
            resp = await self._rpc(req)
        except TimeoutError:
            raise NetworkError(f"simulate timed out after {self.rpc_timeout}s") from None
        except httpx.HTTPError as e:
            raise NetworkError(f"simulate failed: {e.__class__.__name__} {e}") from e
        if not resp.is_successful():
            error = resp.result.get("error", "unknown")
            raise NetworkError(f"simulate failed: {error}", retryable=error not in ("unknownCmd", "notImpl", "invalidParams"))
        log.info("Simulated %s for %s: %s", op.kind, op.account, resp.result.get("engine_result"))
        return dict(resp.result)

    async def submit_and_wait(self, env: SignedEnvelope, *, progress: Progress | None = None) -> dict[str, Any]:
        """Send the blob once, then block until it validates or can no longer validate."""
        lls = env.last_ledger_sequence
        try:
            resp = await self._rpc(SubmitOnly(tx_blob=env.tx_blob))
        except httpx.ConnectError as e:
            # Connection never opened, so the blob was not sent
            raise NetworkError(f"submit failed before sending: {e}") from e
        except (TimeoutError, httpx.HTTPError) as e:
            log.error("Submit of %s interrupted: %s", env.tx_hash, e.__class__.__name__)
            raise StatusUnknownError(env.tx_hash, lls, reason=f"submit interrupted: {e.__class__.__name__}") from e

        if not resp.is_successful():
            error = resp.result.get("error", "unknown")
            raise NetworkError(f"submit refused by server: {error} {resp.result.get('error_message', '')}".rstrip(), retryable=False)

        res = resp.result
        er = res.get("engine_result")
        log.info("Submitted %s engine_result=%s", env.tx_hash, er)

        if isinstance(er, str) and er.startswith(("tem", "tef")):
            # Not applied and never will be as signed
            return {**res, "hash": env.tx_hash}

        if progress:
            progress("awaiting validation")
        return await self._wait(env.tx_hash, lls)

    async def _lookup(self, tx_hash: str) -> dict[str, Any] | None:
        """Validated Tx result, or None while the transaction is unknown or pending."""
        try:
            r = await self._rpc(Tx(transaction=tx_hash))
        except (TimeoutError, httpx.HTTPError) as e:
            log.warning("Tx lookup for %s failed: %s", tx_hash, e.__class__.__name__)
            return None
        if r.is_successful() and r.result.get("validated"):
            return {**r.result, "hash": tx_hash}
        return None

    async def _validated_index(self) -> int | None:
        try:
            r = await self._rpc(ServerState())
        except (TimeoutError, httpx.HTTPError) as e:
            log.warning("server_state failed: %s", e.__class__.__name__)
            return None
        if not r.is_successful():
            return None
        validated = r.result.get("state", {}).get("validated_ledger")
        return int(validated["seq"]) if validated else None

    async def _expired(self, tx_hash: str, lls: int) -> dict[str, Any] | None:
        validated_index = await self._validated_index()
        if validated_index is None or validated_index <= lls:
            return None
        # It may have validated between the lookup and now
        final = await self._lookup(tx_hash)
        if final is not None:
            return final
        log.warning("Expired %s: validated ledger %s passed LastLedgerSequence %s", tx_hash, validated_index, lls)
        return {
            "engine_result": "tefMAX_LEDGER",
            "hash": tx_hash,
            "expired": True,
            "validated_ledger": validated_index,
            "last_ledger_sequence": lls,
        }

    async def _wait(self, tx_hash: str, lls: int) -> dict[str, Any]:
        try:
            async with asyncio.timeout(self.submit_timeout):
                while True:
                    final = await self._lookup(tx_hash)
                    if final is not None:
                        return final
                    expired = await self._expired(tx_hash, lls)
                    if expired is not None:
                        return expired
                    await asyncio.sleep(self.poll_interval)
        except TimeoutError:
            log.error("No verdict for %s after %.1fs", tx_hash, self.submit_timeout)
            raise StatusUnknownError(tx_hash, lls, reason=f"no verdict after {self.submit_timeout}s") from None

    async def check_status(self, tx_hash: str, last_ledger_sequence: int | None = None) -> dict[str, Any] | None:
        """Look a transaction up by hash without resubmitting it.

        Returns the validated result, an expiry result when `last_ledger_sequence`
        has passed, or None while it is still undecided.
        """
        final = await self._lookup(tx_hash)
        if final is not None or last_ledger_sequence is None:
            return final
        return await self._expired(tx_hash, last_ledger_sequence)

    def announce(self, envelope: OutcomeEnvelope) -> None:
        """Hand the outcome to listeners without waiting for them."""
        self.events.publish("outcome", envelope)
