from typing import Final
from enum import StrEnum

# Sequence value used when a ticket stands in for the account sequence
SEQUENCE_UNUSED: Final = 0

# AccountRoot flags
LSF_REQUIRE_DEST_TAG: Final = 0x00020000
LSF_DISABLE_MASTER: Final = 0x00100000

# NFTokenMint flags
TF_BURNABLE: Final = 0x00000001
TF_ONLY_XRP: Final = 0x00000002
TF_TRUSTLINE: Final = 0x00000004
TF_TRANSFERABLE: Final = 0x00000008
TF_MUTABLE: Final = 0x00000010

# TrustSet flags
TF_SET_NO_RIPPLE: Final = 0x00020000
TF_CLEAR_NO_RIPPLE: Final = 0x00040000

# OfferCreate flags
TF_PASSIVE: Final = 0x00010000
TF_IMMEDIATE_OR_CANCEL: Final = 0x00020000
TF_FILL_OR_KILL: Final = 0x00040000
TF_SELL: Final = 0x00080000

DROPS_PER_XRP: Final = 1_000_000
MAX_TRANSFER_FEE: Final = 50_000  # 50%, in 1/100000 units
MAX_TICKET_COUNT: Final = 250
TRANSFER_RATE_ONE: Final = 1_000_000_000


class TxType(StrEnum):
    ACCOUNT_SET     = "AccountSet"
    ESCROW_CANCEL   = "EscrowCancel"
    ESCROW_CREATE   = "EscrowCreate"
    ESCROW_FINISH   = "EscrowFinish"
    NFTOKEN_BURN    = "NFTokenBurn"
    NFTOKEN_MINT    = "NFTokenMint"
    OFFER_CANCEL    = "OfferCancel"
    OFFER_CREATE    = "OfferCreate"
    PAYMENT         = "Payment"
    TICKET_CREATE   = "TicketCreate"
    TRUSTSET        = "TrustSet"


class SigningMode(StrEnum):
    DIRECT    = "direct"
    DELEGATED = "delegated"
    THRESHOLD = "threshold"


class Outcome(StrEnum):
    SUCCESS   = "Success"
    RETRYABLE = "Retryable"
    REJECTED  = "Rejected"
    UNKNOWN   = "Unknown"


class RunState(StrEnum):
    CREATED    = "CREATED"
    BUILT      = "BUILT"
    SIGNED     = "SIGNED"
    SIMULATED  = "SIMULATED"
    SUBMITTED  = "SUBMITTED"
    CLASSIFIED = "CLASSIFIED"
    ABORTED    = "ABORTED"


# Ledgers added on top of the validated index for LastLedgerSequence
LAST_LEDGER_OFFSET = 20
MAX_FEE_DROPS = 1000  # base is 10, this is 100x
RPC_TIMEOUT = 2.0
SUBMIT_TIMEOUT = 60.0
POLL_INTERVAL = 1.0
CACHE_TTL = 30.0
CACHE_MAXSIZE = 512
EVENT_QUEUE_SIZE = 1000

__all__ = [
    "CACHE_MAXSIZE",
    "CACHE_TTL",
    "DROPS_PER_XRP",
    "EVENT_QUEUE_SIZE",
    "LAST_LEDGER_OFFSET",
    "LSF_DISABLE_MASTER",
    "LSF_REQUIRE_DEST_TAG",
    "MAX_FEE_DROPS",
    "MAX_TICKET_COUNT",
    "MAX_TRANSFER_FEE",
    "POLL_INTERVAL",
    "RPC_TIMEOUT",
    "SEQUENCE_UNUSED",
    "SUBMIT_TIMEOUT",
    "TF_BURNABLE",
    "TF_CLEAR_NO_RIPPLE",
    "TF_FILL_OR_KILL",
    "TF_IMMEDIATE_OR_CANCEL",
    "TF_MUTABLE",
    "TF_ONLY_XRP",
    "TF_PASSIVE",
    "TF_SELL",
    "TF_SET_NO_RIPPLE",
    "TF_TRANSFERABLE",
    "TF_TRUSTLINE",
    "TRANSFER_RATE_ONE",

    ######
    "Outcome",
    "RunState",
    "SigningMode",
    "TxType",
]
