"""Data passed between pipeline stages.

Everything here is frozen. A stage that needs a different value builds a new
object; nothing is patched in place once a run has produced it.
"""

import copy
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping

from xrpl.models import Transaction

import txflow.constants as C
from txflow.errors import LedgerRejection


@dataclass(frozen=True, slots=True)
class FeeInfo:
    """Current fee escalation state from the rippled fee command.

    All fee values are in drops. current_ledger_size and current_queue_size
    change with every transaction, so this is only good for one run.
    """

    expected_ledger_size: int
    current_ledger_size: int
    current_queue_size: int
    max_queue_size: int
    base_fee: int  # drops
    median_fee: int  # drops
    minimum_fee: int  # drops
    open_ledger_fee: int  # drops
    ledger_current_index: int

    @classmethod
    def from_fee_result(cls, result: dict) -> "FeeInfo":
        """Parse the 'result' field of a Fee response."""
        drops = result["drops"]
        return cls(
            expected_ledger_size=int(result["expected_ledger_size"]),
            current_ledger_size=int(result["current_ledger_size"]),
            current_queue_size=int(result["current_queue_size"]),
            max_queue_size=int(result["max_queue_size"]),
            base_fee=int(drops["base_fee"]),
            median_fee=int(drops["median_fee"]),
            minimum_fee=int(drops["minimum_fee"]),
            open_ledger_fee=int(drops["open_ledger_fee"]),
            ledger_current_index=int(result["ledger_current_index"]),
        )


@dataclass(frozen=True, slots=True)
class SignerEntry:
    account: str
    weight: int


@dataclass(frozen=True, slots=True)
class SignerListInfo:
    """The SignerList object the ledger holds for an account."""

    quorum: int
    entries: tuple[SignerEntry, ...]

    @classmethod
    def from_ledger_object(cls, obj: dict) -> "SignerListInfo":
        entries = tuple(
            SignerEntry(account=e["SignerEntry"]["Account"], weight=int(e["SignerEntry"]["SignerWeight"]))
            for e in obj.get("SignerEntries", [])
        )
        return cls(quorum=int(obj["SignerQuorum"]), entries=entries)

    def weight_of(self, account: str) -> int | None:
        for e in self.entries:
            if e.account == account:
                return e.weight
        return None


@dataclass(frozen=True, slots=True)
class AccountSnapshot:
    address: str
    balance: int  # drops
    sequence: int
    flags: int = 0
    owner_count: int = 0
    regular_key: str | None = None
    signer_list: SignerListInfo | None = None

    @property
    def master_disabled(self) -> bool:
        return bool(self.flags & C.LSF_DISABLE_MASTER)

    @property
    def requires_dest_tag(self) -> bool:
        return bool(self.flags & C.LSF_REQUIRE_DEST_TAG)

    @classmethod
    def from_account_info(cls, result: dict) -> "AccountSnapshot":
        """Parse an account_info result. Signer lists sit at the top level in
        API v2 and inside account_data in v1."""
        data = result["account_data"]
        lists = result.get("signer_lists", data.get("signer_lists")) or []
        return cls(
            address=data["Account"],
            balance=int(data["Balance"]),
            sequence=int(data["Sequence"]),
            flags=int(data.get("Flags", 0)),
            owner_count=int(data.get("OwnerCount", 0)),
            regular_key=data.get("RegularKey"),
            signer_list=SignerListInfo.from_ledger_object(lists[0]) if lists else None,
        )


@dataclass(frozen=True, slots=True)
class TrustLine:
    """One account_lines entry, seen from the acting account."""

    peer: str
    currency: str
    balance: Decimal
    limit: Decimal

    @classmethod
    def from_line(cls, line: dict) -> "TrustLine":
        return cls(
            peer=line["account"],
            currency=line["currency"],
            balance=Decimal(line["balance"]),
            limit=Decimal(line["limit"]),
        )


@dataclass(frozen=True, slots=True)
class LedgerContext:
    """What the ledger looked like when this run started.

    Fetched fresh for every run; the sequence in here is only valid until
    the account submits anything else.
    """

    account: AccountSnapshot
    fee: int  # drops, before any multi-sign scaling
    fee_info: FeeInfo
    expiration_horizon: int  # latest validated ledger index
    reserve_base: int  # drops
    reserve_inc: int  # drops
    tickets: frozenset[int] | None = None
    trust_lines: tuple[TrustLine, ...] | None = None
    server_info: Mapping[str, Any] | None = None

    @property
    def sequence(self) -> int:
        return self.account.sequence

    @property
    def account_flags(self) -> int:
        return self.account.flags

    def required_reserve(self, new_objects: int = 0) -> int:
        return self.reserve_base + self.reserve_inc * (self.account.owner_count + new_objects)

    def trust_line(self, peer: str, currency: str) -> TrustLine | None:
        for line in self.trust_lines or ():
            if line.peer == peer and line.currency == currency:
                return line
        return None


def _freeze(tx: dict) -> Mapping[str, Any]:
    return MappingProxyType(copy.deepcopy(tx))


@dataclass(frozen=True, slots=True)
class CanonicalOperation:
    """A fully populated, unsigned transaction."""

    tx_json: Mapping[str, Any]
    new_objects: int = 0  # ledger objects this operation adds to the owner count

    @classmethod
    def from_dict(cls, tx: dict, new_objects: int = 0) -> "CanonicalOperation":
        return cls(tx_json=_freeze(tx), new_objects=new_objects)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self.tx_json))

    def to_model(self) -> Transaction:
        return Transaction.from_xrpl(self.to_dict())

    def evolve(self, **fields: Any) -> "CanonicalOperation":
        """Return a new operation with fields replaced. The original is untouched."""
        tx = self.to_dict()
        tx.update(fields)
        return CanonicalOperation.from_dict(tx, self.new_objects)

    @property
    def kind(self) -> str:
        return self.tx_json["TransactionType"]

    @property
    def account(self) -> str:
        return self.tx_json["Account"]

    @property
    def sequence(self) -> int:
        return int(self.tx_json["Sequence"])

    @property
    def ticket_sequence(self) -> int | None:
        ts = self.tx_json.get("TicketSequence")
        return None if ts is None else int(ts)

    @property
    def fee(self) -> int:
        return int(self.tx_json["Fee"])

    @property
    def last_ledger_sequence(self) -> int:
        return int(self.tx_json["LastLedgerSequence"])

    @property
    def native_value_moved(self) -> int:
        """Drops leaving the account besides the fee."""
        amount = self.tx_json.get("Amount")
        if self.kind in (C.TxType.PAYMENT, C.TxType.ESCROW_CREATE) and isinstance(amount, str):
            return int(amount)
        return 0

    @property
    def issued_value_moved(self) -> Mapping[str, str] | None:
        amount = self.tx_json.get("Amount")
        if self.kind == C.TxType.PAYMENT and isinstance(amount, Mapping):
            return amount
        return None


@dataclass(frozen=True, slots=True)
class SignedEnvelope:
    tx_blob: str
    tx_hash: str
    tx_json: Mapping[str, Any]
    mode: C.SigningMode

    @property
    def last_ledger_sequence(self) -> int:
        return int(self.tx_json["LastLedgerSequence"])


@dataclass(frozen=True, slots=True)
class OutcomeEnvelope:
    engine_result: str
    outcome: C.Outcome
    is_final: bool
    diagnostic: str
    raw: Mapping[str, Any] = field(default_factory=dict)
    tx_hash: str | None = None
    ledger_index: int | None = None
    simulated: bool = False

    @property
    def is_success(self) -> bool:
        return self.outcome == C.Outcome.SUCCESS

    def raise_for_outcome(self) -> "OutcomeEnvelope":
        """Raise LedgerRejection if the ledger refused the operation."""
        if self.outcome == C.Outcome.REJECTED:
            raise LedgerRejection(self)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "engine_result": self.engine_result,
            "outcome": str(self.outcome),
            "is_final": self.is_final,
            "is_success": self.is_success,
            "diagnostic": self.diagnostic,
            "tx_hash": self.tx_hash,
            "ledger_index": self.ledger_index,
            "simulated": self.simulated,
            "raw": dict(self.raw),
        }
