"""Map engine result codes to an outcome and a message a person can act on."""

import logging
from collections.abc import Mapping
from typing import Any

import txflow.constants as C
from txflow.models import OutcomeEnvelope

log = logging.getLogger("txflow.classify")

DIAGNOSTICS: dict[str, str] = {
    "tesSUCCESS": "The transaction was applied and validated.",
    "tecCLAIM": "The transaction failed but the fee was claimed.",
    "tecDST_TAG_NEEDED": "The destination requires a destination tag.",
    "tecEXPIRED": "The expiration time is already in the past.",
    "tecINSUF_RESERVE_LINE": "Not enough XRP to meet the reserve for a new trust line.",
    "tecINSUF_RESERVE_OFFER": "Not enough XRP to meet the reserve for a new offer.",
    "tecINSUFFICIENT_RESERVE": "Not enough XRP to meet the reserve for a new ledger object.",
    "tecKILLED": "The offer could not be filled and was killed.",
    "tecNO_DST": "The destination account does not exist.",
    "tecNO_DST_INSUF_XRP": "The destination does not exist and the amount is too small to create it.",
    "tecNO_ENTRY": "The referenced ledger object does not exist.",
    "tecNO_LINE": "The required trust line does not exist.",
    "tecNO_PERMISSION": "The account is not allowed to do this.",
    "tecNO_TARGET": "The target account does not exist.",
    "tecPATH_DRY": "No liquidity along any path for this payment.",
    "tecPATH_PARTIAL": "Only part of the amount could be delivered.",
    "tecUNFUNDED_OFFER": "The offer is not funded.",
    "tecUNFUNDED_PAYMENT": "Insufficient balance to send this amount.",
    "tefALREADY": "The same transaction was already applied.",
    "tefBAD_AUTH": "The signing key is not authorized for this account.",
    "tefBAD_AUTH_MASTER": "The master key is not authorized for this account.",
    "tefBAD_QUORUM": "The combined signer weight does not meet the quorum.",
    "tefBAD_SIGNATURE": "A signer is not in the account's signer list.",
    "tefMASTER_DISABLED": "The master key is disabled; sign with the regular key or multi-sign.",
    "tefMAX_LEDGER": "LastLedgerSequence passed before the transaction was validated.",
    "tefNO_TICKET": "The ticket does not exist.",
    "tefNOT_MULTI_SIGNING": "The account has no signer list; it cannot be multi-signed.",
    "tefPAST_SEQ": "The sequence number has already been used.",
    "telCAN_NOT_QUEUE": "The server could not queue the transaction.",
    "telCAN_NOT_QUEUE_FEE": "The fee is too low to queue the transaction.",
    "telCAN_NOT_QUEUE_FULL": "The transaction queue is full.",
    "telINSUF_FEE_P": "The fee is below what the server currently requires.",
    "temBAD_AMOUNT": "The amount is invalid.",
    "temBAD_CURRENCY": "The currency code is invalid.",
    "temBAD_FEE": "The fee is invalid.",
    "temBAD_SEQUENCE": "Sequence and ticket fields are inconsistent.",
    "temBAD_SIGNATURE": "The signature is malformed.",
    "temBAD_SIGNER": "The signer list is malformed.",
    "temDST_IS_SRC": "Sender and destination are the same.",
    "temDST_NEEDED": "A destination is required.",
    "temINVALID": "The transaction is malformed.",
    "temINVALID_FLAG": "The transaction sets an invalid flag.",
    "temMALFORMED": "The transaction is malformed.",
    "temREDUNDANT": "The transaction does nothing.",
    "terINSUF_FEE_B": "The account cannot pay the fee right now.",
    "terNO_ACCOUNT": "The sending account does not exist.",
    "terPRE_SEQ": "An earlier sequence number has not been applied yet.",
    "terPRE_TICKET": "The ticket has not been created yet.",
    "terQUEUED": "The transaction was queued for a later ledger.",
}

PREFIX_DIAGNOSTICS: dict[str, str] = {
    "tes": "The transaction succeeded.",
    "tec": "The transaction failed and the fee was claimed.",
    "tef": "The transaction failed and cannot succeed as signed.",
    "tel": "The server refused the transaction locally; it may be retried.",
    "tem": "The transaction is malformed.",
    "ter": "The transaction could not be applied yet; it may be retried.",
}

UNKNOWN_DIAGNOSTIC = "Unrecognized result from the ledger."


def diagnostic_for(code: str | None) -> str:
    if not code:
        return UNKNOWN_DIAGNOSTIC
    if code in DIAGNOSTICS:
        return DIAGNOSTICS[code]
    generic = PREFIX_DIAGNOSTICS.get(code[:3])
    return f"{generic} ({code})" if generic else f"{UNKNOWN_DIAGNOSTIC} ({code})"


def _engine_result(raw: Mapping[str, Any]) -> str | None:
    meta = raw.get("meta")
    if isinstance(meta, Mapping) and isinstance(meta.get("TransactionResult"), str):
        return meta["TransactionResult"]
    er = raw.get("engine_result")
    return er if isinstance(er, str) else None


class ResultClassifier:
    """Turns a normalized ledger response into an OutcomeEnvelope.

    Never raises for unknown input: an unrecognized shape is Unknown with a
    generic diagnostic.
    """

    def classify(self, raw: Mapping[str, Any], *, simulated: bool = False) -> OutcomeEnvelope:
        code = _engine_result(raw)
        validated = bool(raw.get("validated"))
        tx_hash = raw.get("hash") or (raw.get("tx_json") or {}).get("hash")
        ledger_index = raw.get("ledger_index") if validated else None

        prefix = code[:3] if code else None
        match prefix:
            case "tes":
                outcome = C.Outcome.SUCCESS
                final = validated and not simulated
            case "tec":
                outcome = C.Outcome.REJECTED
                final = validated and not simulated
            case "tem" | "tef":
                outcome = C.Outcome.REJECTED
                final = not simulated
            case "tel" | "ter":
                outcome = C.Outcome.RETRYABLE
                final = False
            case _:
                outcome = C.Outcome.UNKNOWN
                final = False

        envelope = OutcomeEnvelope(
            engine_result=code or "unknown",
            outcome=outcome,
            is_final=final,
            diagnostic=diagnostic_for(code),
            raw=raw,
            tx_hash=tx_hash,
            ledger_index=ledger_index,
            simulated=simulated,
        )
        log.debug("Classified %s -> %s final=%s", code, outcome, final)
        return envelope
