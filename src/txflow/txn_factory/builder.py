import hashlib
import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from xrpl.models.exceptions import XRPLModelException
from xrpl.models.transactions import (
    AccountSet,
    EscrowCancel,
    EscrowCreate,
    EscrowFinish,
    NFTokenBurn,
    NFTokenMint,
    OfferCancel,
    OfferCreate,
    Payment,
    TicketCreate,
    Transaction,
    TrustSet,
)
from xrpl.utils import datetime_to_ripple_time

import txflow.constants as C
from txflow.errors import ValidationError
from txflow.models import CanonicalOperation, LedgerContext
from txflow.operations import (
    AccountSetDraft,
    Amount,
    EscrowCancelDraft,
    EscrowCreateDraft,
    EscrowFinishDraft,
    IssuedAmount,
    NFTokenBurnDraft,
    NFTokenMintDraft,
    OfferCancelDraft,
    OfferCreateDraft,
    OperationDraft,
    PaymentDraft,
    TicketCreateDraft,
    TrustSetDraft,
)

log = logging.getLogger("txflow.txn")

_HEX40 = re.compile(r"^[0-9A-Fa-f]{40}$")
_HEX64 = re.compile(r"^[0-9A-Fa-f]{64}$")
MEMO_TYPE_TEXT = "text/plain".encode("utf-8").hex().upper()
ACCOUNT_SET_EMPTY_MSG = "AccountSet changes nothing: set a flag, domain, transfer rate or tick size"


def ticket_missing(ticket: int, account: str) -> str:
    return f"Ticket Sequence {ticket} not found for account {account}"


# =============================================================================
# Field normalization
# =============================================================================


def parse_decimal(value: Any, name: str = "Amount") -> Decimal:
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{name} must be a valid number") from None
    if not d.is_finite():
        raise ValidationError(f"{name} must be a valid number")
    return d


def xrp_to_drops(value: Any, name: str = "Amount") -> str:
    """XRP (decimal string or number) -> integer drops as a string."""
    drops = parse_decimal(value, name) * C.DROPS_PER_XRP
    if drops != drops.to_integral_value():
        raise ValidationError(f"{name} has more than 6 decimal places")
    if drops <= 0:
        raise ValidationError(f"{name} must be greater than 0")
    return str(int(drops))


def encode_currency(code: str) -> str:
    """Standard 3 character codes pass through; longer codes become the 40 hex digit form."""
    code = code.strip()
    if _HEX40.match(code):
        return code.upper()
    if len(code) == 3:
        if code.upper() == "XRP":
            raise ValidationError("XRP is not a valid issued currency code")
        return code
    raw = code.encode("utf-8")
    if len(code) < 3 or len(raw) > 20:
        raise ValidationError(f"Invalid currency code: {code!r}")
    return raw.hex().upper().ljust(40, "0")


def normalize_amount(value: Amount, name: str = "Amount") -> str | dict[str, str]:
    if isinstance(value, IssuedAmount):
        if parse_decimal(value.value, name) <= 0:
            raise ValidationError(f"{name} must be greater than 0")
        return {"currency": encode_currency(value.currency), "issuer": value.issuer, "value": str(value.value)}
    return xrp_to_drops(value, name)


def text_to_hex(text: str) -> str:
    return text.encode("utf-8").hex().upper()


def memo_entry(text: str) -> dict:
    return {"Memo": {"MemoData": text_to_hex(text), "MemoType": MEMO_TYPE_TEXT}}


def invoice_id(text: str) -> str:
    """64 hex digits pass through, anything else is hashed."""
    if _HEX64.match(text):
        return text.upper()
    return hashlib.sha256(text.encode("utf-8")).hexdigest().upper()


def transfer_rate(percent: Any) -> int:
    """Percentage fee -> TransferRate in billionths (1% -> 1010000000)."""
    p = parse_decimal(percent, "Transfer rate")
    if p < 0 or p > 100:
        raise ValidationError("Transfer rate must be between 0 and 100%")
    return int((1 + p / 100) * C.TRANSFER_RATE_ONE + Decimal("0.5"))


def _optional(tx: dict, key: str, value: Any) -> None:
    # Empty and zero values are left out; an explicit default is not the same as absent
    if value is None or value == "" or value == 0:
        return
    tx[key] = value


def _flags(*pairs: tuple[bool, int]) -> int:
    flags = 0
    for enabled, bit in pairs:
        if enabled:
            flags |= bit
    return flags


# =============================================================================
# Internal builder functions - one per transaction type
# =============================================================================


def _build_payment(d: PaymentDraft, now: int) -> dict:
    tx = {"Destination": d.destination, "Amount": normalize_amount(d.amount)}
    _optional(tx, "DestinationTag", d.destination_tag)
    if d.invoice_id:
        tx["InvoiceID"] = invoice_id(d.invoice_id)
    return tx


def _build_trustset(d: TrustSetDraft, now: int) -> dict:
    value = parse_decimal(d.limit, "Limit")
    if value < 0:
        raise ValidationError("Limit must not be negative")
    tx: dict[str, Any] = {
        "LimitAmount": {"currency": encode_currency(d.currency), "issuer": d.issuer, "value": str(d.limit)},
    }
    if d.no_ripple is not None:
        _optional(tx, "Flags", C.TF_SET_NO_RIPPLE if d.no_ripple else C.TF_CLEAR_NO_RIPPLE)
    return tx


def _build_escrow_create(d: EscrowCreateDraft, now: int) -> dict:
    if isinstance(d.amount, IssuedAmount):
        raise ValidationError("Escrow amount must be XRP")
    tx = {"Destination": d.destination, "Amount": xrp_to_drops(d.amount)}
    _optional(tx, "FinishAfter", now + d.finish_after if d.finish_after else None)
    _optional(tx, "CancelAfter", now + d.cancel_after if d.cancel_after else None)
    _optional(tx, "Condition", d.condition.upper() if d.condition else None)
    _optional(tx, "DestinationTag", d.destination_tag)
    return tx


def _build_escrow_finish(d: EscrowFinishDraft, now: int) -> dict:
    if bool(d.condition) != bool(d.fulfillment):
        raise ValidationError("Condition and fulfillment must be supplied together")
    tx = {"Owner": d.owner, "OfferSequence": int(d.offer_sequence)}
    _optional(tx, "Condition", d.condition.upper() if d.condition else None)
    _optional(tx, "Fulfillment", d.fulfillment.upper() if d.fulfillment else None)
    return tx


def _build_escrow_cancel(d: EscrowCancelDraft, now: int) -> dict:
    return {"Owner": d.owner, "OfferSequence": int(d.offer_sequence)}


def _build_offer_create(d: OfferCreateDraft, now: int) -> dict:
    if d.immediate_or_cancel and d.fill_or_kill:
        raise ValidationError("Immediate-or-cancel and fill-or-kill cannot both be set")
    tx = {
        "TakerGets": normalize_amount(d.taker_gets, "TakerGets"),
        "TakerPays": normalize_amount(d.taker_pays, "TakerPays"),
    }
    _optional(tx, "Expiration", now + d.expiration if d.expiration else None)
    _optional(
        tx,
        "Flags",
        _flags(
            (d.passive, C.TF_PASSIVE),
            (d.immediate_or_cancel, C.TF_IMMEDIATE_OR_CANCEL),
            (d.fill_or_kill, C.TF_FILL_OR_KILL),
            (d.sell, C.TF_SELL),
        ),
    )
    return tx


def _build_offer_cancel(d: OfferCancelDraft, now: int) -> dict:
    return {"OfferSequence": int(d.offer_sequence)}


def _build_nftoken_mint(d: NFTokenMintDraft, now: int) -> dict:
    if d.transfer_fee and not d.transferable:
        raise ValidationError("TransferFee requires the transferable flag")
    if d.transfer_fee and not 0 < int(d.transfer_fee) <= C.MAX_TRANSFER_FEE:
        raise ValidationError(f"TransferFee must be between 0 and {C.MAX_TRANSFER_FEE}")
    tx: dict[str, Any] = {"NFTokenTaxon": int(d.taxon)}
    _optional(tx, "URI", text_to_hex(d.uri) if d.uri else None)
    _optional(tx, "TransferFee", int(d.transfer_fee) if d.transfer_fee else None)
    _optional(
        tx,
        "Flags",
        _flags(
            (d.burnable, C.TF_BURNABLE),
            (d.only_xrp, C.TF_ONLY_XRP),
            (d.transferable, C.TF_TRANSFERABLE),
            (d.mutable, C.TF_MUTABLE),
        ),
    )
    return tx


def _build_nftoken_burn(d: NFTokenBurnDraft, now: int) -> dict:
    tx = {"NFTokenID": d.nftoken_id.upper()}
    _optional(tx, "Owner", d.owner)
    return tx


def _build_accountset(d: AccountSetDraft, now: int) -> dict:
    if d.set_flag and d.set_flag == d.clear_flag:
        raise ValidationError("Cannot set and clear the same flag")
    tx: dict[str, Any] = {}
    _optional(tx, "SetFlag", d.set_flag)
    _optional(tx, "ClearFlag", d.clear_flag)
    # xrpl-py wants Domain as lowercase hex
    _optional(tx, "Domain", d.domain.strip().lower().encode("utf-8").hex() if d.domain else None)
    # 0 clears TransferRate and TickSize on the ledger, so it is written when given
    if d.transfer_rate is not None and d.transfer_rate != "":
        rate = transfer_rate(d.transfer_rate)
        tx["TransferRate"] = 0 if rate == C.TRANSFER_RATE_ONE else rate
    if d.tick_size is not None and d.tick_size != "":
        tx["TickSize"] = int(d.tick_size)
    if not tx and not d.memo:
        raise ValidationError(ACCOUNT_SET_EMPTY_MSG)
    return tx


def _build_ticket_create(d: TicketCreateDraft, now: int) -> dict:
    return {"TicketCount": int(d.ticket_count)}


_BUILDERS: dict[str, tuple[Callable[[Any, int], dict], type[Transaction]]] = {
    C.TxType.PAYMENT: (_build_payment, Payment),
    C.TxType.TRUSTSET: (_build_trustset, TrustSet),
    C.TxType.ESCROW_CREATE: (_build_escrow_create, EscrowCreate),
    C.TxType.ESCROW_FINISH: (_build_escrow_finish, EscrowFinish),
    C.TxType.ESCROW_CANCEL: (_build_escrow_cancel, EscrowCancel),
    C.TxType.OFFER_CREATE: (_build_offer_create, OfferCreate),
    C.TxType.OFFER_CANCEL: (_build_offer_cancel, OfferCancel),
    C.TxType.NFTOKEN_MINT: (_build_nftoken_mint, NFTokenMint),
    C.TxType.NFTOKEN_BURN: (_build_nftoken_burn, NFTokenBurn),
    C.TxType.ACCOUNT_SET: (_build_accountset, AccountSet),
    C.TxType.TICKET_CREATE: (_build_ticket_create, TicketCreate),
}


def new_objects(draft: OperationDraft) -> int:
    """Ledger objects the operation adds to the account's owner count."""
    match draft:
        case TrustSetDraft(limit=limit):
            return 1 if limit is not None and parse_decimal(limit, "Limit") != 0 else 0
        case TicketCreateDraft(ticket_count=count):
            return int(count or 0)
        case OfferCreateDraft() | EscrowCreateDraft() | NFTokenMintDraft():
            return 1
    return 0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TransactionBuilder:
    """Turns a draft plus a fresh LedgerContext into a CanonicalOperation."""

    def __init__(self, *, margin: int = C.LAST_LEDGER_OFFSET, clock: Callable[[], datetime] = _utc_now) -> None:
        self.margin = margin
        self.clock = clock

    def build(self, draft: OperationDraft, ctx: LedgerContext) -> CanonicalOperation:
        builder_spec = _BUILDERS.get(draft.kind)
        if not builder_spec:
            raise ValidationError(f"Unsupported operation kind: {draft.kind}")
        builder_fn, model_cls = builder_spec

        tx: dict[str, Any] = {"TransactionType": str(draft.kind), "Account": draft.account}
        tx.update(builder_fn(draft, datetime_to_ripple_time(self.clock())))

        if draft.ticket_sequence is not None:
            if draft.ticket_sequence not in (ctx.tickets or ()):
                raise ValidationError(ticket_missing(draft.ticket_sequence, draft.account))
            tx["Sequence"] = C.SEQUENCE_UNUSED
            tx["TicketSequence"] = int(draft.ticket_sequence)
        else:
            tx["Sequence"] = ctx.sequence

        tx["Fee"] = str(ctx.fee)
        tx["LastLedgerSequence"] = ctx.expiration_horizon + self.margin
        if draft.memo:
            tx["Memos"] = [memo_entry(draft.memo)]

        try:
            model_cls.from_xrpl(tx)
        except XRPLModelException as e:
            raise ValidationError(str(e)) from None

        log.debug("Built %s: %s", draft.kind, tx)
        return CanonicalOperation.from_dict(tx, new_objects=new_objects(draft))
