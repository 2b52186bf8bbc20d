"""Who signs, and how.

A SigningPlan says which key(s) authorize an operation. Direct uses the
account's master key, Delegated its RegularKey, Threshold a quorum of the
account's SignerList. Plans are built per run from the stored configuration
and the account flags fetched for that run.
"""

import hashlib
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import ClassVar, Protocol

from xrpl import XRPLException
from xrpl.constants import CryptoAlgorithm
from xrpl.core.addresscodec import decode_classic_address
from xrpl.core.binarycodec import encode, encode_for_multisigning, encode_for_signing
from xrpl.core.keypairs import sign as keypairs_sign
from xrpl.wallet import Wallet

import txflow.constants as C
from txflow.errors import SigningError
from txflow.models import AccountSnapshot, CanonicalOperation, SignedEnvelope
from txflow.operations import OperationDraft

log = logging.getLogger("txflow.sign")

MASTER_DISABLED_MSG = "Master key is disabled. Must sign with Regular Key or Multi-sign."


def _sha512half(b: bytes) -> bytes:
    return hashlib.sha512(b).digest()[:32]


def tx_hash_from_blob(signed_blob_hex: str) -> str:
    # XRPL txid = SHA512Half(0x54584E00 || signed_bytes)
    return _sha512half(bytes.fromhex("54584E00") + bytes.fromhex(signed_blob_hex)).hex().upper()


def multisign_fee(base_fee: int, signer_count: int) -> int:
    """Multi-signed transactions pay the base fee once per signature plus once for the transaction."""
    if signer_count < 1:
        raise SigningError("A multi-signed transaction needs at least one signer")
    return base_fee * (signer_count + 1)


def canonical_signer_order(accounts: Iterable[str]) -> list[str]:
    """Sort classic addresses by their 20-byte AccountID, the order the ledger requires for Signers."""
    return sorted(accounts, key=decode_classic_address)


class KeyProvider(Protocol):
    def wallet_for(self, handle: str) -> Wallet: ...


class InMemoryKeyProvider:
    """Wallets held in process, keyed by an opaque handle."""

    def __init__(self, wallets: Mapping[str, Wallet] | None = None) -> None:
        self._wallets: dict[str, Wallet] = dict(wallets or {})

    @classmethod
    def from_seeds(cls, seeds: Mapping[str, str], algorithm: CryptoAlgorithm | None = None) -> "InMemoryKeyProvider":
        return cls({handle: Wallet.from_seed(seed, algorithm=algorithm) for handle, seed in seeds.items()})

    def add(self, handle: str, wallet: Wallet) -> None:
        self._wallets[handle] = wallet

    def wallet_for(self, handle: str) -> Wallet:
        try:
            return self._wallets[handle]
        except KeyError:
            raise SigningError(f"No key available for handle {handle!r}") from None

    def __contains__(self, handle: str) -> bool:
        return handle in self._wallets


@dataclass(frozen=True, slots=True)
class SignerSlot:
    """One entry of the stored signer configuration."""

    account: str
    weight: int
    key_handle: str


@dataclass(frozen=True, slots=True)
class RegularKeyRef:
    address: str
    key_handle: str


@dataclass(frozen=True, slots=True)
class SigningConfig:
    """Stored signing configuration for one account.

    master_handle defaults to the account address when unset.
    """

    master_handle: str | None = None
    regular_key: RegularKeyRef | None = None
    signer_quorum: int | None = None
    signers: tuple[SignerSlot, ...] = ()


@dataclass(frozen=True, slots=True)
class DirectPlan:
    mode: ClassVar[C.SigningMode] = C.SigningMode.DIRECT
    owner: str
    key_handle: str


@dataclass(frozen=True, slots=True)
class DelegatedPlan:
    mode: ClassVar[C.SigningMode] = C.SigningMode.DELEGATED
    owner: str
    regular_key: str
    key_handle: str


@dataclass(frozen=True, slots=True)
class ThresholdPlan:
    mode: ClassVar[C.SigningMode] = C.SigningMode.THRESHOLD
    owner: str
    signers: tuple[SignerSlot, ...]
    quorum: int

    def __post_init__(self) -> None:
        if not self.signers:
            raise SigningError("Threshold signing needs at least one signer")
        accounts = [s.account for s in self.signers]
        dupes = sorted({a for a in accounts if accounts.count(a) > 1})
        if dupes:
            raise SigningError(f"Duplicate signer(s): {', '.join(dupes)}")
        if self.weight < self.quorum:
            raise SigningError(f"Signer weight {self.weight} is below quorum {self.quorum}")

    @property
    def weight(self) -> int:
        return sum(s.weight for s in self.signers)

    @property
    def signer_count(self) -> int:
        return len(self.signers)


SigningPlan = DirectPlan | DelegatedPlan | ThresholdPlan


class SigningAuthorityResolver:
    def __init__(self, keys: KeyProvider) -> None:
        self.keys = keys

    def resolve(self, draft: OperationDraft, account: AccountSnapshot, config: SigningConfig | None = None) -> SigningPlan:
        """Pick the signing path for `draft` given the account's flags and stored configuration."""
        config = config or SigningConfig()
        mode = draft.signing

        if mode == C.SigningMode.DIRECT:
            if account.master_disabled:
                raise SigningError(MASTER_DISABLED_MSG)
            return DirectPlan(owner=draft.account, key_handle=config.master_handle or draft.account)

        if mode == C.SigningMode.DELEGATED:
            if config.regular_key is None:
                raise SigningError(f"No regular key configured for {draft.account}")
            if account.regular_key is None:
                raise SigningError(f"{draft.account} has no RegularKey set on the ledger")
            if account.regular_key != config.regular_key.address:
                raise SigningError(
                    f"Configured regular key {config.regular_key.address} does not match ledger RegularKey {account.regular_key}"
                )
            return DelegatedPlan(
                owner=draft.account, regular_key=config.regular_key.address, key_handle=config.regular_key.key_handle
            )

        # Threshold
        if not config.signers:
            raise SigningError(f"No signers configured for {draft.account}")
        if account.signer_list is None:
            raise SigningError(f"{draft.account} has no SignerList on the ledger")

        participating = config.signers
        if draft.signers is not None:
            stored = {s.account for s in config.signers}
            unknown = [a for a in draft.signers if a not in stored]
            if unknown:
                raise SigningError(f"Signer(s) not in stored configuration: {', '.join(unknown)}")
            chosen = set(draft.signers)
            participating = tuple(s for s in config.signers if s.account in chosen)

        not_listed = [s.account for s in participating if account.signer_list.weight_of(s.account) is None]
        if not_listed:
            raise SigningError(f"Not in the account's SignerList: {', '.join(not_listed)}")

        quorum = config.signer_quorum if config.signer_quorum is not None else account.signer_list.quorum
        return ThresholdPlan(owner=draft.account, signers=tuple(participating), quorum=quorum)

    def apply_fee(self, op: CanonicalOperation, plan: SigningPlan) -> CanonicalOperation:
        """Scale the fee for multi-signing. Returns a new operation; must happen before any signature."""
        if not isinstance(plan, ThresholdPlan):
            return op
        fee = multisign_fee(op.fee, plan.signer_count)
        log.debug("Multi-sign fee for %s signers: %s -> %s drops", plan.signer_count, op.fee, fee)
        return op.evolve(Fee=str(fee), SigningPubKey="")

    def _wallet(self, handle: str, expected_address: str) -> Wallet:
        wallet = self.keys.wallet_for(handle)
        if wallet.address != expected_address:
            raise SigningError(f"Key for {expected_address} does not match (got {wallet.address})")
        return wallet

    def aggregate(self, op: CanonicalOperation, signers: tuple[SignerSlot, ...]) -> list[dict]:
        """Collect one detached signature per signer over the same unsigned payload.

        `signers` must already be in ascending AccountID order with no duplicates.
        """
        accounts = [s.account for s in signers]
        if len(set(accounts)) != len(accounts):
            raise SigningError("Signer list contains duplicate accounts")
        ids = [decode_classic_address(a) for a in accounts]
        if ids != sorted(ids):
            raise SigningError(
                "Signers are not in ascending account order: expected " + ", ".join(canonical_signer_order(accounts))
            )
        if op.tx_json.get("SigningPubKey") != "":
            raise SigningError("Multi-signed operations need an empty SigningPubKey and a pre-scaled fee")
        if "TxnSignature" in op.tx_json or "Signers" in op.tx_json:
            raise SigningError("Operation is already signed")

        entries = []
        for slot in signers:
            wallet = self._wallet(slot.key_handle, slot.account)
            try:
                payload = encode_for_multisigning(op.to_dict(), slot.account)
                signature = keypairs_sign(bytes.fromhex(payload), wallet.private_key)
            except XRPLException as e:
                raise SigningError(f"Signing failed for {slot.account}: {e}") from e
            entries.append(
                {"Signer": {"Account": slot.account, "SigningPubKey": wallet.public_key, "TxnSignature": signature}}
            )
        return entries

    def sign(self, op: CanonicalOperation, plan: SigningPlan) -> SignedEnvelope:
        if op.account != plan.owner:
            raise SigningError(f"Plan is for {plan.owner}, operation is for {op.account}")

        tx = op.to_dict()
        if isinstance(plan, ThresholdPlan):
            tx["Signers"] = self.aggregate(op, plan.signers)
        else:
            expected = plan.regular_key if isinstance(plan, DelegatedPlan) else plan.owner
            wallet = self._wallet(plan.key_handle, expected)
            tx["SigningPubKey"] = wallet.public_key
            try:
                tx["TxnSignature"] = keypairs_sign(bytes.fromhex(encode_for_signing(tx)), wallet.private_key)
            except XRPLException as e:
                raise SigningError(f"Signing failed for {op.account}: {e}") from e

        try:
            blob = encode(tx)
        except XRPLException as e:
            raise SigningError(f"Could not serialize signed operation: {e}") from e
        tx_hash = tx_hash_from_blob(blob)
        log.info("Signed %s for %s via %s hash=%s", op.kind, op.account, plan.mode, tx_hash)
        return SignedEnvelope(tx_blob=blob, tx_hash=tx_hash, tx_json=tx, mode=plan.mode)
