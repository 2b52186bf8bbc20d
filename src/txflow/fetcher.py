import asyncio
import logging
from typing import Any

import httpx
from xrpl.asyncio.clients import AsyncJsonRpcClient
from xrpl.core.addresscodec import is_valid_classic_address
from xrpl.models.requests import AccountInfo, AccountLines, AccountObjects, AccountObjectType, Fee, ServerState
from xrpl.models.requests.request import Request

import txflow.constants as C
from txflow.cache import TTLCache
from txflow.errors import NetworkError, TxFlowError, ValidationError
from txflow.models import AccountSnapshot, FeeInfo, LedgerContext, TrustLine
from txflow.operations import OperationDraft

log = logging.getLogger("txflow.fetch")

_NOT_CACHED = object()
_MALFORMED = frozenset({"actMalformed", "srcActMalformed", "invalidParams"})


def _first_error(eg: BaseExceptionGroup) -> BaseException:
    flat: list[BaseException] = []

    def walk(g: BaseExceptionGroup) -> None:
        for e in g.exceptions:
            if isinstance(e, BaseExceptionGroup):
                walk(e)
            else:
                flat.append(e)

    walk(eg)
    for kind in (ValidationError, TxFlowError):
        for e in flat:
            if isinstance(e, kind):
                return e
    return flat[0]


class LedgerContextFetcher:
    """Read-only ledger queries that make up a LedgerContext.

    Every read for one context is issued concurrently; if any of them fails the
    whole fetch fails. Nothing is retried here.
    """

    def __init__(
        self,
        client: AsyncJsonRpcClient,
        *,
        cache: TTLCache | None = None,
        rpc_timeout: float = C.RPC_TIMEOUT,
        max_fee_drops: int = C.MAX_FEE_DROPS,
    ) -> None:
        self.client = client
        self.cache = cache if cache is not None else TTLCache(C.CACHE_TTL, C.CACHE_MAXSIZE)
        self.rpc_timeout = rpc_timeout
        self.max_fee_drops = max_fee_drops
        self.network = getattr(client, "url", "")

    async def _rpc(self, req: Request, *, t: float | None = None) -> dict[str, Any]:
        try:
            resp = await asyncio.wait_for(self.client.request(req), timeout=t or self.rpc_timeout)
        except TimeoutError:
            raise NetworkError(f"{req.method.value} timed out after {t or self.rpc_timeout}s") from None
        except httpx.HTTPError as e:
            raise NetworkError(f"{req.method.value} failed: {e.__class__.__name__} {e}") from e

        if not resp.is_successful():
            error = resp.result.get("error", "unknown")
            if error == "actNotFound":
                raise ValidationError(f"Account not found: {getattr(req, 'account', '?')}")
            if error in _MALFORMED:
                # malformed requests are not retryable
                raise ValidationError(f"{req.method.value} rejected: {error} {resp.result.get('error_message', '')}".rstrip())
            raise NetworkError(f"{req.method.value} failed: {error} {resp.result.get('error_message', '')}".rstrip())
        return resp.result

    async def account_snapshot(self, address: str) -> AccountSnapshot:
        result = await self._rpc(AccountInfo(account=address, ledger_index="current", signer_lists=True))
        return AccountSnapshot.from_account_info(result)

    async def fee_info(self) -> FeeInfo:
        return FeeInfo.from_fee_result(await self._rpc(Fee()))

    async def server_state(self) -> dict[str, Any]:
        return (await self._rpc(ServerState()))["state"]

    async def tickets(self, address: str) -> frozenset[int]:
        found: set[int] = set()
        marker = None
        while True:
            result = await self._rpc(
                AccountObjects(account=address, type=AccountObjectType.TICKET, ledger_index="current", marker=marker)
            )
            found.update(int(o["TicketSequence"]) for o in result.get("account_objects", []))
            marker = result.get("marker")
            if marker is None:
                return frozenset(found)

    async def trust_lines(self, address: str, peer: str | None = None) -> tuple[TrustLine, ...]:
        lines: list[TrustLine] = []
        marker = None
        while True:
            result = await self._rpc(AccountLines(account=address, peer=peer, ledger_index="current", marker=marker))
            lines.extend(TrustLine.from_line(line) for line in result.get("lines", []))
            marker = result.get("marker")
            if marker is None:
                return tuple(lines)

    def _fee_from(self, info: FeeInfo) -> int:
        # minimum_fee gets into the queue; it equals base_fee unless the queue is filling up
        fee = max(info.minimum_fee, info.base_fee)
        log.debug(
            "Fee: %s drops (min=%s, open=%s, base=%s, queue=%s/%s)",
            fee, info.minimum_fee, info.open_ledger_fee, info.base_fee, info.current_queue_size, info.max_queue_size,
        )
        if fee > info.base_fee:
            log.warning("Queue fees escalated: minimum=%s open_ledger=%s base=%s", info.minimum_fee, info.open_ledger_fee, info.base_fee)
        if fee > self.max_fee_drops:
            raise NetworkError(f"Fee too high ({fee} drops > {self.max_fee_drops} max), wait for the queue to drain")
        return fee

    async def fetch(
        self,
        address: str,
        *,
        want_tickets: bool = False,
        trust_line_peer: str | None = None,
    ) -> LedgerContext:
        """Gather a fresh LedgerContext for `address`."""
        try:
            async with asyncio.TaskGroup() as tg:
                t_account = tg.create_task(self.account_snapshot(address), name="account_info")
                t_fee = tg.create_task(self.fee_info(), name="fee")
                t_state = tg.create_task(self.server_state(), name="server_state")
                t_tickets = tg.create_task(self.tickets(address), name="tickets") if want_tickets else None
                t_lines = (
                    tg.create_task(self.trust_lines(address, trust_line_peer), name="account_lines")
                    if trust_line_peer else None
                )
        except ExceptionGroup as eg:
            raise _first_error(eg) from None

        state = t_state.result()
        validated = state.get("validated_ledger")
        if not validated:
            raise NetworkError("Server has no validated ledger yet")

        fee_info = t_fee.result()
        ctx = LedgerContext(
            account=t_account.result(),
            fee=self._fee_from(fee_info),
            fee_info=fee_info,
            expiration_horizon=int(validated["seq"]),
            reserve_base=int(validated["reserve_base"]),
            reserve_inc=int(validated["reserve_inc"]),
            tickets=t_tickets.result() if t_tickets else None,
            trust_lines=t_lines.result() if t_lines else None,
            server_info=state,
        )
        log.debug(
            "Context %s seq=%s bal=%s owners=%s fee=%s horizon=%s",
            address, ctx.sequence, ctx.account.balance, ctx.account.owner_count, ctx.fee, ctx.expiration_horizon,
        )
        return ctx

    async def fetch_for(self, draft: OperationDraft) -> LedgerContext:
        """Fetch what `draft` needs: tickets only when it names one, lines only
        when it moves an issued amount the account does not issue itself."""
        issued = draft.issued_amount()
        peer = issued.issuer if issued is not None and issued.issuer != draft.account else None
        bad = [a for a in (draft.account, peer) if a is not None and not is_valid_classic_address(a)]
        if bad:
            raise ValidationError([f"{a!r} is not a valid address" for a in bad])
        return await self.fetch(draft.account, want_tickets=draft.ticket_sequence is not None, trust_line_peer=peer)

    async def destination(self, address: str) -> AccountSnapshot | None:
        """Another account's validated state, or None if it does not exist.

        Served from the TTL cache when possible.
        """
        key = (self.network, address)
        cached = self.cache.get(key, _NOT_CACHED)
        if cached is not _NOT_CACHED:
            return cached
        try:
            result = await self._rpc(AccountInfo(account=address, ledger_index="validated"))
        except ValidationError:
            snapshot = None
        else:
            snapshot = AccountSnapshot.from_account_info(result)
        self.cache.set(key, snapshot)
        return snapshot
