"""Checks that run before anything is signed.

Each operation kind has a Rules entry: required fields, synchronous checks and
asynchronous checks that need another ledger read. Every check runs and every
message is returned, so the caller sees all problems at once. Async checks
only run when everything else passed.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from xrpl.core.addresscodec import is_valid_classic_address

import txflow.constants as C
from txflow.errors import ValidationError
from txflow.fetcher import LedgerContextFetcher
from txflow.models import LedgerContext
from txflow.operations import IssuedAmount, OperationDraft
from txflow.signing import MASTER_DISABLED_MSG
from txflow.txn_factory.builder import (
    ACCOUNT_SET_EMPTY_MSG,
    encode_currency,
    normalize_amount,
    parse_decimal,
    ticket_missing,
)

log = logging.getLogger("txflow.preflight")

Check = Callable[[Any, LedgerContext], str | None]
AsyncCheck = Callable[[Any, LedgerContext, LedgerContextFetcher], Awaitable[str | None]]

_HEX = re.compile(r"^[0-9A-Fa-f]*$")
_HEX64 = re.compile(r"^[0-9A-Fa-f]{64}$")
UINT32_MAX = 0xFFFFFFFF


@dataclass(frozen=True, slots=True)
class Rules:
    checks: tuple[Check, ...] = ()
    async_checks: tuple[AsyncCheck, ...] = ()


def _blank(value: Any) -> bool:
    return value is None or value == ""


# =============================================================================
# Check factories
# =============================================================================


def address(field: str, label: str) -> Check:
    def check(d: OperationDraft, ctx: LedgerContext) -> str | None:
        value = getattr(d, field)
        if not _blank(value) and not is_valid_classic_address(value):
            return f"{label} is not a valid address"
        return None
    return check


def not_self(field: str, message: str) -> Check:
    def check(d: OperationDraft, ctx: LedgerContext) -> str | None:
        return message if getattr(d, field) == d.account else None
    return check


def int_range(field: str, label: str, lo: int, hi: int = UINT32_MAX) -> Check:
    def check(d: OperationDraft, ctx: LedgerContext) -> str | None:
        value = getattr(d, field)
        if _blank(value):
            return None
        try:
            n = int(value)
        except (TypeError, ValueError):
            return f"{label} must be a valid number"
        if n < lo:
            return f"{label} must be greater than {lo - 1}" if lo > 0 else f"{label} must not be negative"
        if n > hi:
            return f"{label} must be at most {hi}"
        return None
    return check


def amount(field: str, label: str, *, native_only: bool = False) -> Check:
    def check(d: OperationDraft, ctx: LedgerContext) -> str | None:
        value = getattr(d, field)
        if _blank(value):
            return None
        if native_only and isinstance(value, IssuedAmount):
            return f"{label} must be XRP"
        if isinstance(value, IssuedAmount) and not is_valid_classic_address(value.issuer):
            return f"{label} issuer is not a valid address"
        try:
            normalize_amount(value, label)
        except ValidationError as e:
            return e.errors[0]
        return None
    return check


def hex_field(field: str, label: str) -> Check:
    def check(d: OperationDraft, ctx: LedgerContext) -> str | None:
        value = getattr(d, field)
        if not _blank(value) and (not _HEX.match(value) or len(value) % 2):
            return f"{label} must be hex"
        return None
    return check


def max_bytes(field: str, label: str, limit: int) -> Check:
    def check(d: OperationDraft, ctx: LedgerContext) -> str | None:
        value = getattr(d, field)
        if not _blank(value) and len(str(value).encode("utf-8")) > limit:
            return f"{label} must be at most {limit} bytes"
        return None
    return check


# =============================================================================
# Checks shared by every kind
# =============================================================================


def _account_valid(d: OperationDraft, ctx: LedgerContext) -> str | None:
    return None if is_valid_classic_address(d.account) else "Account is not a valid address"


def _master_key(d: OperationDraft, ctx: LedgerContext) -> str | None:
    if d.signing == C.SigningMode.DIRECT and ctx.account.master_disabled:
        return MASTER_DISABLED_MSG
    return None


def _ticket(d: OperationDraft, ctx: LedgerContext) -> str | None:
    if d.ticket_sequence is None:
        return None
    try:
        ticket = int(d.ticket_sequence)
    except (TypeError, ValueError):
        return "Ticket sequence must be a valid number"
    if ticket <= 0:
        return "Ticket sequence must be greater than 0"
    if ticket not in (ctx.tickets or ()):
        return ticket_missing(d.ticket_sequence, d.account)
    return None


def _signers_chosen(d: OperationDraft, ctx: LedgerContext) -> str | None:
    if d.signing == C.SigningMode.THRESHOLD and d.signers is not None and not d.signers:
        return "Select at least one signer"
    return None


COMMON = (_account_valid, _master_key, _ticket, _signers_chosen)


# =============================================================================
# Kind specific checks
# =============================================================================


def _payment_self(d, ctx: LedgerContext) -> str | None:
    # An issued payment to self is how rippling/path payments work; native to self is never valid
    if d.destination == d.account and not isinstance(d.amount, IssuedAmount):
        return "Sender and receiver cannot be the same"
    return None


def _escrow_times(d, ctx: LedgerContext) -> str | None:
    if _blank(d.finish_after) and _blank(d.condition):
        return "Escrow needs a finish time or a condition"
    if not _blank(d.finish_after) and not _blank(d.cancel_after) and int(d.cancel_after) <= int(d.finish_after):
        return "Cancel time must be after finish time"
    return None


def _condition_pair(d, ctx: LedgerContext) -> str | None:
    if _blank(d.condition) != _blank(d.fulfillment):
        return "Condition and fulfillment must be supplied together"
    return None


def _offer_pair(d, ctx: LedgerContext) -> str | None:
    if _blank(d.taker_gets) or _blank(d.taker_pays):
        return None
    if not isinstance(d.taker_gets, IssuedAmount) and not isinstance(d.taker_pays, IssuedAmount):
        return "Cannot trade XRP for XRP"
    return None


def _offer_flags(d, ctx: LedgerContext) -> str | None:
    if d.immediate_or_cancel and d.fill_or_kill:
        return "Immediate-or-cancel and fill-or-kill cannot both be set"
    return None


def _trust_currency(d, ctx: LedgerContext) -> str | None:
    if _blank(d.currency):
        return None
    try:
        encode_currency(d.currency)
    except ValidationError as e:
        return e.errors[0]
    return None


def _trust_limit(d, ctx: LedgerContext) -> str | None:
    if _blank(d.limit):
        return None
    try:
        limit = parse_decimal(d.limit, "Limit")
    except ValidationError as e:
        return e.errors[0]
    return "Limit must not be negative" if limit < 0 else None


def _transfer_fee(d, ctx: LedgerContext) -> str | None:
    if d.transfer_fee and not d.transferable:
        return "TransferFee requires the transferable flag"
    return None


def _nftoken_id(d, ctx: LedgerContext) -> str | None:
    if not _blank(d.nftoken_id) and not _HEX64.match(d.nftoken_id):
        return "NFTokenID must be 64 hex characters"
    return None


def _set_clear(d, ctx: LedgerContext) -> str | None:
    if d.set_flag and d.set_flag == d.clear_flag:
        return "Cannot set and clear the same flag"
    return None


def _tick_size(d, ctx: LedgerContext) -> str | None:
    if _blank(d.tick_size):
        return None
    try:
        size = int(d.tick_size)
    except (TypeError, ValueError):
        return "Tick size must be a valid number"
    if size != 0 and not 3 <= size <= 15:
        return "Tick size must be 0 or between 3 and 15"
    return None


def _account_set_changes(d, ctx: LedgerContext) -> str | None:
    fields = (d.set_flag, d.clear_flag, d.domain, d.transfer_rate, d.tick_size, d.memo)
    return ACCOUNT_SET_EMPTY_MSG if all(_blank(v) for v in fields) else None


def _transfer_rate(d, ctx: LedgerContext) -> str | None:
    if _blank(d.transfer_rate):
        return None
    try:
        rate = parse_decimal(d.transfer_rate, "Transfer rate")
    except ValidationError as e:
        return e.errors[0]
    return None if 0 <= rate <= 100 else "Transfer rate must be between 0 and 100%"


async def _destination_tag(d, ctx: LedgerContext, fetcher: LedgerContextFetcher) -> str | None:
    if d.destination == d.account:
        return None
    dest = await fetcher.destination(d.destination)
    if dest is None:
        if isinstance(d.amount, IssuedAmount):
            return f"Destination account {d.destination} does not exist"
        drops = int(normalize_amount(d.amount))
        if drops < ctx.reserve_base:
            return f"Destination account {d.destination} does not exist and {drops} drops will not cover the {ctx.reserve_base} drop reserve"
        return None
    if dest.requires_dest_tag and not d.destination_tag:
        return "Receiver requires a Destination Tag for payment"
    return None


async def _issuer_exists(d, ctx: LedgerContext, fetcher: LedgerContextFetcher) -> str | None:
    if await fetcher.destination(d.issuer) is None:
        return f"Issuer account {d.issuer} does not exist"
    return None


async def _escrow_owner_exists(d, ctx: LedgerContext, fetcher: LedgerContextFetcher) -> str | None:
    if d.owner != d.account and await fetcher.destination(d.owner) is None:
        return f"Escrow owner {d.owner} does not exist"
    return None


_RULES: dict[str, Rules] = {
    C.TxType.PAYMENT: Rules(
        checks=(
            address("destination", "Destination"),
            _payment_self,
            amount("amount", "Amount"),
            int_range("destination_tag", "Destination tag", 0),
        ),
        async_checks=(_destination_tag,),
    ),
    C.TxType.TRUSTSET: Rules(
        checks=(
            address("issuer", "Issuer"),
            not_self("issuer", "Cannot create a trust line to yourself"),
            _trust_currency,
            _trust_limit,
        ),
        async_checks=(_issuer_exists,),
    ),
    C.TxType.ESCROW_CREATE: Rules(
        checks=(
            address("destination", "Destination"),
            amount("amount", "Amount", native_only=True),
            int_range("finish_after", "Finish after", 1),
            int_range("cancel_after", "Cancel after", 1),
            int_range("destination_tag", "Destination tag", 0),
            hex_field("condition", "Condition"),
            _escrow_times,
        ),
        async_checks=(_destination_tag,),
    ),
    C.TxType.ESCROW_FINISH: Rules(
        checks=(
            address("owner", "Owner"),
            int_range("offer_sequence", "Escrow sequence", 1),
            hex_field("condition", "Condition"),
            hex_field("fulfillment", "Fulfillment"),
            _condition_pair,
        ),
        async_checks=(_escrow_owner_exists,),
    ),
    C.TxType.ESCROW_CANCEL: Rules(
        checks=(
            address("owner", "Owner"),
            int_range("offer_sequence", "Escrow sequence", 1),
        ),
        async_checks=(_escrow_owner_exists,),
    ),
    C.TxType.OFFER_CREATE: Rules(
        checks=(
            amount("taker_gets", "TakerGets"),
            amount("taker_pays", "TakerPays"),
            int_range("expiration", "Expiration", 1),
            _offer_pair,
            _offer_flags,
        ),
    ),
    C.TxType.OFFER_CANCEL: Rules(
        checks=(int_range("offer_sequence", "Offer sequence", 1),),
    ),
    C.TxType.NFTOKEN_MINT: Rules(
        checks=(
            int_range("taxon", "Taxon", 0),
            int_range("transfer_fee", "TransferFee", 0, C.MAX_TRANSFER_FEE),
            max_bytes("uri", "URI", 256),
            _transfer_fee,
        ),
    ),
    C.TxType.NFTOKEN_BURN: Rules(
        checks=(_nftoken_id, address("owner", "Owner")),
    ),
    C.TxType.ACCOUNT_SET: Rules(
        checks=(
            int_range("set_flag", "SetFlag", 1, 31),
            int_range("clear_flag", "ClearFlag", 1, 31),
            _set_clear,
            _tick_size,
            _transfer_rate,
            _account_set_changes,
            max_bytes("domain", "Domain", 256),
        ),
    ),
    C.TxType.TICKET_CREATE: Rules(
        checks=(int_range("ticket_count", "Ticket count", 1, C.MAX_TICKET_COUNT),),
    ),
}


class PreflightValidator:
    def __init__(self, fetcher: LedgerContextFetcher, rules: dict[str, Rules] | None = None) -> None:
        self.fetcher = fetcher
        self.rules = rules if rules is not None else _RULES

    def _sync(self, draft: OperationDraft, ctx: LedgerContext) -> list[str]:
        errors = [f"{name} is required" for name in draft.required if _blank(getattr(draft, name))]
        rules = self.rules.get(draft.kind, Rules())
        malformed = []
        for check in (*COMMON, *rules.checks):
            try:
                msg = check(draft, ctx)
            except ValidationError as e:
                errors.extend(e.errors)
                continue
            except (TypeError, ValueError) as e:
                malformed.append(f"Malformed {draft.kind} field: {e}")
                continue
            if msg:
                errors.append(msg)
        # a field-level message already covers the value a cross-field check choked on
        return errors or malformed

    async def validate(self, draft: OperationDraft, ctx: LedgerContext) -> list[str]:
        """Every problem with `draft`, or an empty list."""
        errors = self._sync(draft, ctx)
        if errors:
            log.info("Preflight %s for %s: %s", draft.kind, draft.account, errors)
            return errors

        rules = self.rules.get(draft.kind, Rules())
        if rules.async_checks:
            results = await asyncio.gather(*(check(draft, ctx, self.fetcher) for check in rules.async_checks))
            errors = [msg for msg in results if msg]
        if errors:
            log.info("Preflight %s for %s: %s", draft.kind, draft.account, errors)
        return errors

    async def check(self, draft: OperationDraft, ctx: LedgerContext) -> None:
        """Raise ValidationError carrying every problem found."""
        errors = await self.validate(draft, ctx)
        if errors:
            raise ValidationError(errors)
