"""Operation drafts: one dataclass per transaction kind.

A draft is the user's intent before anything has been checked. Kind specific
fields default to None so that preflight can report every missing field at
once instead of failing on the first one.
"""

from dataclasses import MISSING, dataclass, fields
from decimal import Decimal
from typing import Any, ClassVar, Mapping

import txflow.constants as C
from txflow.errors import ValidationError

AMOUNT_FIELDS = ("amount", "taker_gets", "taker_pays")
INT_FIELDS = (
    "ticket_sequence",
    "destination_tag",
    "finish_after",
    "cancel_after",
    "offer_sequence",
    "expiration",
    "taxon",
    "transfer_fee",
    "set_flag",
    "clear_flag",
    "tick_size",
    "ticket_count",
)


@dataclass(frozen=True, slots=True)
class IssuedAmount:
    currency: str
    issuer: str
    value: str

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "IssuedAmount":
        try:
            return cls(currency=str(d["currency"]), issuer=str(d["issuer"]), value=str(d["value"]))
        except KeyError as e:
            raise ValidationError(f"Issued amount is missing {e.args[0]}") from None


# Native amounts are given in XRP, as a decimal string or number
Amount = str | int | Decimal | IssuedAmount


@dataclass(kw_only=True, slots=True)
class OperationDraft:
    kind: ClassVar[C.TxType]
    required: ClassVar[tuple[str, ...]] = ()

    account: str
    ticket_sequence: int | None = None
    memo: str | None = None
    signing: C.SigningMode = C.SigningMode.DIRECT
    signers: tuple[str, ...] | None = None  # threshold only: which stored signers take part

    def issued_amount(self) -> IssuedAmount | None:
        """Issued-currency value leaving the account, if any."""
        return None


@dataclass(kw_only=True, slots=True)
class PaymentDraft(OperationDraft):
    kind: ClassVar[C.TxType] = C.TxType.PAYMENT
    required: ClassVar[tuple[str, ...]] = ("destination", "amount")

    destination: str | None = None
    amount: Amount | None = None
    destination_tag: int | None = None
    invoice_id: str | None = None

    def issued_amount(self) -> IssuedAmount | None:
        return self.amount if isinstance(self.amount, IssuedAmount) else None


@dataclass(kw_only=True, slots=True)
class TrustSetDraft(OperationDraft):
    kind: ClassVar[C.TxType] = C.TxType.TRUSTSET
    required: ClassVar[tuple[str, ...]] = ("currency", "issuer", "limit")

    currency: str | None = None
    issuer: str | None = None
    limit: str | int | Decimal | None = None
    no_ripple: bool | None = None


@dataclass(kw_only=True, slots=True)
class EscrowCreateDraft(OperationDraft):
    kind: ClassVar[C.TxType] = C.TxType.ESCROW_CREATE
    required: ClassVar[tuple[str, ...]] = ("destination", "amount")

    destination: str | None = None
    amount: Amount | None = None
    finish_after: int | None = None  # seconds from now
    cancel_after: int | None = None  # seconds from now
    condition: str | None = None
    destination_tag: int | None = None


@dataclass(kw_only=True, slots=True)
class EscrowFinishDraft(OperationDraft):
    kind: ClassVar[C.TxType] = C.TxType.ESCROW_FINISH
    required: ClassVar[tuple[str, ...]] = ("owner", "offer_sequence")

    owner: str | None = None
    offer_sequence: int | None = None
    condition: str | None = None
    fulfillment: str | None = None


@dataclass(kw_only=True, slots=True)
class EscrowCancelDraft(OperationDraft):
    kind: ClassVar[C.TxType] = C.TxType.ESCROW_CANCEL
    required: ClassVar[tuple[str, ...]] = ("owner", "offer_sequence")

    owner: str | None = None
    offer_sequence: int | None = None


@dataclass(kw_only=True, slots=True)
class OfferCreateDraft(OperationDraft):
    kind: ClassVar[C.TxType] = C.TxType.OFFER_CREATE
    required: ClassVar[tuple[str, ...]] = ("taker_gets", "taker_pays")

    taker_gets: Amount | None = None
    taker_pays: Amount | None = None
    expiration: int | None = None  # seconds from now
    passive: bool = False
    immediate_or_cancel: bool = False
    fill_or_kill: bool = False
    sell: bool = False


@dataclass(kw_only=True, slots=True)
class OfferCancelDraft(OperationDraft):
    kind: ClassVar[C.TxType] = C.TxType.OFFER_CANCEL
    required: ClassVar[tuple[str, ...]] = ("offer_sequence",)

    offer_sequence: int | None = None


@dataclass(kw_only=True, slots=True)
class NFTokenMintDraft(OperationDraft):
    kind: ClassVar[C.TxType] = C.TxType.NFTOKEN_MINT
    required: ClassVar[tuple[str, ...]] = ("taxon",)

    taxon: int | None = None
    uri: str | None = None
    transfer_fee: int | None = None  # 1/100000 units, 50000 = 50%
    burnable: bool = False
    only_xrp: bool = False
    transferable: bool = False
    mutable: bool = False


@dataclass(kw_only=True, slots=True)
class NFTokenBurnDraft(OperationDraft):
    kind: ClassVar[C.TxType] = C.TxType.NFTOKEN_BURN
    required: ClassVar[tuple[str, ...]] = ("nftoken_id",)

    nftoken_id: str | None = None
    owner: str | None = None


@dataclass(kw_only=True, slots=True)
class AccountSetDraft(OperationDraft):
    kind: ClassVar[C.TxType] = C.TxType.ACCOUNT_SET

    set_flag: int | None = None
    clear_flag: int | None = None
    domain: str | None = None
    transfer_rate: str | int | Decimal | None = None  # percent, 0..100
    tick_size: int | None = None


@dataclass(kw_only=True, slots=True)
class TicketCreateDraft(OperationDraft):
    kind: ClassVar[C.TxType] = C.TxType.TICKET_CREATE
    required: ClassVar[tuple[str, ...]] = ("ticket_count",)

    ticket_count: int | None = None


DRAFT_TYPES: dict[str, type[OperationDraft]] = {
    cls.kind: cls
    for cls in (
        PaymentDraft,
        TrustSetDraft,
        EscrowCreateDraft,
        EscrowFinishDraft,
        EscrowCancelDraft,
        OfferCreateDraft,
        OfferCancelDraft,
        NFTokenMintDraft,
        NFTokenBurnDraft,
        AccountSetDraft,
        TicketCreateDraft,
    )
}


def draft_type(kind: str) -> type[OperationDraft]:
    """Look up a draft class by transaction type, ignoring case."""
    if kind in DRAFT_TYPES:
        return DRAFT_TYPES[kind]
    for name, cls in DRAFT_TYPES.items():
        if name.lower() == str(kind).lower():
            return cls
    raise ValidationError(f"Unsupported operation kind: {kind}")


def draft_from_dict(kind: str, values: Mapping[str, Any]) -> OperationDraft:
    """Build a typed draft from a loose field mapping (e.g. a request body)."""
    cls = draft_type(kind)
    known = {f.name: f for f in fields(cls)}

    unknown = sorted(set(values) - set(known))
    errors = [f"Unknown field for {cls.kind}: {name}" for name in unknown]
    missing = [
        name for name, f in known.items()
        if f.default is MISSING and f.default_factory is MISSING and values.get(name) in (None, "")
    ]
    errors.extend(f"{name} is required" for name in missing)

    kwargs: dict[str, Any] = {}
    for name, value in values.items():
        if name in INT_FIELDS and value not in (None, ""):
            try:
                value = int(value)
            except (TypeError, ValueError):
                errors.append(f"{name} must be a valid number")
                continue
        elif name in AMOUNT_FIELDS and isinstance(value, Mapping):
            value = IssuedAmount.from_dict(value)
        elif name == "signing" and value is not None:
            try:
                value = C.SigningMode(str(value).lower())
            except ValueError:
                raise ValidationError(f"Unknown signing mode: {value}") from None
        elif name == "signers" and value is not None:
            value = tuple(value)
        kwargs[name] = value
    if errors:
        raise ValidationError(errors)
    return cls(**kwargs)
