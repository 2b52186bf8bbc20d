"""The ordered run: fetch -> preflight -> build -> afford -> sign -> submit -> classify.

Runs for the same account are serialized with a per-account lock held from
the context fetch until the submission has a verdict, so a second run always
sees the sequence left behind by the first.
"""

import asyncio
import logging
import time
import weakref
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from xrpl.asyncio.clients import AsyncJsonRpcClient

import txflow.constants as C
from txflow.affordability import AffordabilityChecker
from txflow.cache import TTLCache
from txflow.classifier import ResultClassifier
from txflow.errors import StatusUnknownError, TxFlowError
from txflow.fetcher import LedgerContextFetcher
from txflow.models import OutcomeEnvelope
from txflow.operations import OperationDraft
from txflow.preflight import PreflightValidator
from txflow.signing import KeyProvider, SigningAuthorityResolver, SigningConfig
from txflow.submission import OutcomeEvents, SubmissionCoordinator
from txflow.txn_factory.builder import TransactionBuilder

log = logging.getLogger("txflow.pipeline")

Progress = Callable[[str], None]

_TRANSITIONS: dict[C.RunState, set[C.RunState]] = {
    C.RunState.CREATED: {C.RunState.BUILT},
    C.RunState.BUILT: {C.RunState.SIGNED, C.RunState.SIMULATED},
    C.RunState.SIGNED: {C.RunState.SUBMITTED},
    C.RunState.SIMULATED: {C.RunState.CLASSIFIED},
    C.RunState.SUBMITTED: {C.RunState.CLASSIFIED},
}
TERMINAL_STATES = {C.RunState.CLASSIFIED, C.RunState.ABORTED}


@dataclass(slots=True)
class RunRecord:
    account: str
    kind: str
    simulate: bool
    state: C.RunState = C.RunState.CREATED
    history: list[C.RunState] = field(default_factory=lambda: [C.RunState.CREATED])
    tx_hash: str | None = None
    last_ledger_sequence: int | None = None
    outcome: OutcomeEnvelope | None = None
    error: str | None = None
    created_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    def advance(self, state: C.RunState) -> None:
        if state not in _TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Illegal run transition {self.state} -> {state}")
        self.state = state
        self.history.append(state)
        if state in TERMINAL_STATES:
            self.finished_at = time.time()

    def abort(self, error: Exception, *, unknown: bool = False) -> None:
        # A submitted run that lost contact stays SUBMITTED; its fate is unknown, not failed
        self.error = str(error)
        if unknown or self.state in TERMINAL_STATES:
            return
        self.state = C.RunState.ABORTED
        self.history.append(C.RunState.ABORTED)
        self.finished_at = time.time()

    def __str__(self):
        return f"{self.kind} -- {self.account} -- {self.state}"


class TransactionPipeline:
    def __init__(
        self,
        client: AsyncJsonRpcClient,
        keys: KeyProvider,
        *,
        cache: TTLCache | None = None,
        events: OutcomeEvents | None = None,
        rpc_timeout: float = C.RPC_TIMEOUT,
        submit_timeout: float = C.SUBMIT_TIMEOUT,
        poll_interval: float = C.POLL_INTERVAL,
        last_ledger_offset: int = C.LAST_LEDGER_OFFSET,
        max_fee_drops: int = C.MAX_FEE_DROPS,
        builder: TransactionBuilder | None = None,
    ) -> None:
        self.events = events if events is not None else OutcomeEvents()
        self.fetcher = LedgerContextFetcher(client, cache=cache, rpc_timeout=rpc_timeout, max_fee_drops=max_fee_drops)
        self.validator = PreflightValidator(self.fetcher)
        self.builder = builder or TransactionBuilder(margin=last_ledger_offset)
        self.checker = AffordabilityChecker()
        self.resolver = SigningAuthorityResolver(keys)
        self.coordinator = SubmissionCoordinator(
            client,
            events=self.events,
            rpc_timeout=rpc_timeout,
            submit_timeout=submit_timeout,
            poll_interval=poll_interval,
        )
        self.classifier = ResultClassifier()
        # a lock lives only while some run for that account holds or waits on it
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self.runs: deque[RunRecord] = deque(maxlen=1000)
        self._by_hash: dict[str, RunRecord] = {}

    @classmethod
    def from_config(cls, client: AsyncJsonRpcClient, keys: KeyProvider, cfg: dict) -> "TransactionPipeline":
        to, ledger, cache = cfg["timeout"], cfg["ledger"], cfg["cache"]
        return cls(
            client,
            keys,
            cache=TTLCache(float(cache["ttl"]), int(cache["maxsize"])),
            rpc_timeout=float(to["rpc"]),
            submit_timeout=float(to["submit"]),
            poll_interval=float(to["poll"]),
            last_ledger_offset=int(ledger["last_ledger_offset"]),
            max_fee_drops=int(ledger["max_fee_drops"]),
        )

    def _lock_for(self, account: str) -> asyncio.Lock:
        lock = self._locks.get(account)
        if lock is None:
            lock = self._locks[account] = asyncio.Lock()
        return lock

    def record_for(self, tx_hash: str) -> RunRecord | None:
        return self._by_hash.get(tx_hash)

    async def run(
        self,
        draft: OperationDraft,
        *,
        simulate: bool = False,
        signing_config: SigningConfig | None = None,
        progress: Progress | None = None,
    ) -> OutcomeEnvelope:
        """Take `draft` through the whole pipeline once. No step is retried.

        Raises ValidationError, AffordabilityError or SigningError before
        anything is sent, NetworkError when a read or the submit could not be
        made, and StatusUnknownError when a sent blob has no verdict yet.
        """
        record = RunRecord(account=draft.account, kind=str(draft.kind), simulate=simulate)
        self.runs.append(record)

        def emit(stage: str) -> None:
            log.debug("%s %s: %s", draft.kind, draft.account, stage)
            if progress:
                progress(stage)
            self.events.publish("progress", {"account": draft.account, "kind": str(draft.kind), "stage": stage})

        async with self._lock_for(draft.account):
            try:
                emit("fetching ledger context")
                ctx = await self.fetcher.fetch_for(draft)

                emit("validating")
                await self.validator.check(draft, ctx)
                plan = self.resolver.resolve(draft, ctx.account, signing_config)

                emit("building")
                op = self.builder.build(draft, ctx)
                emit("computing fee")
                op = self.resolver.apply_fee(op, plan)
                record.last_ledger_sequence = op.last_ledger_sequence
                record.advance(C.RunState.BUILT)

                emit("checking reserve")
                self.checker.check(op, ctx)

                if simulate:
                    emit("simulating")
                    raw = await self.coordinator.run(op, simulate=True)
                    record.advance(C.RunState.SIMULATED)
                else:
                    emit("signing")
                    envelope = self.resolver.sign(op, plan)
                    record.tx_hash = envelope.tx_hash
                    self._by_hash[envelope.tx_hash] = record
                    if len(self._by_hash) > self.runs.maxlen:
                        self._by_hash.pop(next(iter(self._by_hash)))
                    record.advance(C.RunState.SIGNED)

                    emit("submitting")
                    record.advance(C.RunState.SUBMITTED)
                    raw = await self.coordinator.run(envelope, progress=emit)
            except StatusUnknownError as e:
                record.abort(e, unknown=True)
                log.error("%s: %s", record, e)
                raise
            except TxFlowError as e:
                record.abort(e)
                log.info("%s aborted: %s", record, e)
                raise

        emit("classifying")
        outcome = self.classifier.classify(raw, simulated=simulate)
        record.outcome = outcome
        record.advance(C.RunState.CLASSIFIED)
        log.info("%s -> %s (%s)", record, outcome.engine_result, outcome.outcome)
        self.coordinator.announce(outcome)
        return outcome

    async def check_status(self, tx_hash: str) -> OutcomeEnvelope | None:
        """Re-query a submitted transaction by hash. Never resubmits."""
        record = self._by_hash.get(tx_hash)
        lls = record.last_ledger_sequence if record else None
        raw = await self.coordinator.check_status(tx_hash, lls)
        if raw is None:
            return None
        outcome = self.classifier.classify(raw)
        if record is not None and record.state == C.RunState.SUBMITTED:
            record.outcome = outcome
            record.advance(C.RunState.CLASSIFIED)
            self.coordinator.announce(outcome)
        return outcome
