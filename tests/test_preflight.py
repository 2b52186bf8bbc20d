from unittest import IsolatedAsyncioTestCase

from xrpl.wallet import Wallet

import txflow.constants as C
from txflow.errors import ValidationError
from txflow.fetcher import LedgerContextFetcher
from txflow.operations import (
    AccountSetDraft,
    EscrowCreateDraft,
    IssuedAmount,
    NFTokenMintDraft,
    PaymentDraft,
    TicketCreateDraft,
    TrustSetDraft,
)
from txflow.preflight import PreflightValidator, Rules
from txflow.txn_factory.builder import ACCOUNT_SET_EMPTY_MSG
from tests.fakes import RESERVE_BASE, FakeLedger, make_context


class TestPreflight(IsolatedAsyncioTestCase):
    def setUp(self):
        self.alice = Wallet.create().address
        self.bob = Wallet.create().address
        self.ledger = FakeLedger()
        self.ledger.add_account(self.alice)
        self.ledger.add_account(self.bob)
        self.validator = PreflightValidator(LedgerContextFetcher(self.ledger))
        self.ctx = make_context(self.alice, tickets={3})

    async def test_valid_payment(self):
        draft = PaymentDraft(account=self.alice, destination=self.bob, amount="10")
        self.assertEqual(await self.validator.validate(draft, self.ctx), [])

    async def test_master_disabled_is_the_only_error(self):
        ctx = make_context(self.alice, flags=C.LSF_DISABLE_MASTER)
        draft = PaymentDraft(account=self.alice, destination=self.bob, amount="10")
        errors = await self.validator.validate(draft, ctx)
        self.assertEqual(len(errors), 1)
        self.assertIn("Master key is disabled", errors[0])

    async def test_master_disabled_fine_with_other_modes(self):
        ctx = make_context(self.alice, flags=C.LSF_DISABLE_MASTER)
        draft = PaymentDraft(account=self.alice, destination=self.bob, amount="10", signing=C.SigningMode.DELEGATED)
        self.assertEqual(await self.validator.validate(draft, ctx), [])

    async def test_missing_ticket_is_named(self):
        draft = PaymentDraft(account=self.alice, destination=self.bob, amount="10", ticket_sequence=7)
        errors = await self.validator.validate(draft, self.ctx)
        self.assertEqual(errors, [f"Ticket Sequence 7 not found for account {self.alice}"])

    async def test_all_sync_errors_reported_and_no_ledger_reads(self):
        draft = PaymentDraft(account=self.alice, destination=self.alice, amount="0", destination_tag=-1)
        errors = await self.validator.validate(draft, self.ctx)
        self.assertIn("Sender and receiver cannot be the same", errors)
        self.assertIn("Amount must be greater than 0", errors)
        self.assertIn("Destination tag must not be negative", errors)
        self.assertEqual(self.ledger.calls, [])

    async def test_required_fields(self):
        errors = await self.validator.validate(PaymentDraft(account=self.alice), self.ctx)
        self.assertEqual(errors, ["destination is required", "amount is required"])

    async def test_destination_tag_required(self):
        self.ledger.accounts[self.bob].flags = C.LSF_REQUIRE_DEST_TAG
        draft = PaymentDraft(account=self.alice, destination=self.bob, amount="10")
        self.assertEqual(
            await self.validator.validate(draft, self.ctx), ["Receiver requires a Destination Tag for payment"]
        )
        draft.destination_tag = 99
        self.assertEqual(await self.validator.validate(draft, self.ctx), [])

    async def test_destination_lookup_is_cached(self):
        draft = PaymentDraft(account=self.alice, destination=self.bob, amount="10")
        await self.validator.validate(draft, self.ctx)
        await self.validator.validate(draft, self.ctx)
        self.assertEqual(self.ledger.count("account_info"), 1)

    async def test_new_destination_must_be_funded_to_reserve(self):
        carol = Wallet.create().address
        draft = PaymentDraft(account=self.alice, destination=carol, amount="0.5")
        errors = await self.validator.validate(draft, self.ctx)
        self.assertEqual(len(errors), 1)
        self.assertIn(f"{RESERVE_BASE} drop reserve", errors[0])
        draft.amount = "1"
        self.assertEqual(await self.validator.validate(draft, self.ctx), [])

    async def test_issued_payment_to_missing_account(self):
        carol = Wallet.create().address
        draft = PaymentDraft(
            account=self.alice, destination=carol, amount=IssuedAmount(currency="USD", issuer=self.bob, value="1")
        )
        errors = await self.validator.validate(draft, self.ctx)
        self.assertEqual(errors, [f"Destination account {carol} does not exist"])

    async def test_trust_set_checks(self):
        draft = TrustSetDraft(account=self.alice, currency="XRP", issuer=self.alice, limit="-1")
        errors = await self.validator.validate(draft, self.ctx)
        self.assertIn("Cannot create a trust line to yourself", errors)
        self.assertIn("XRP is not a valid issued currency code", errors)
        self.assertIn("Limit must not be negative", errors)

        missing = Wallet.create().address
        draft = TrustSetDraft(account=self.alice, currency="USD", issuer=missing, limit="100")
        self.assertEqual(await self.validator.validate(draft, self.ctx), [f"Issuer account {missing} does not exist"])

    async def test_transfer_fee_without_transferable(self):
        draft = NFTokenMintDraft(account=self.alice, taxon=0, transfer_fee=100)
        errors = await self.validator.validate(draft, self.ctx)
        self.assertEqual(errors, ["TransferFee requires the transferable flag"])

    async def test_escrow_times(self):
        draft = EscrowCreateDraft(account=self.alice, destination=self.bob, amount="1", finish_after=100, cancel_after=50)
        errors = await self.validator.validate(draft, self.ctx)
        self.assertEqual(errors, ["Cancel time must be after finish time"])

    async def test_ticket_count_range(self):
        errors = await self.validator.validate(TicketCreateDraft(account=self.alice, ticket_count=251), self.ctx)
        self.assertEqual(errors, [f"Ticket count must be at most {C.MAX_TICKET_COUNT}"])

    async def test_empty_signer_selection(self):
        draft = PaymentDraft(
            account=self.alice, destination=self.bob, amount="1", signing=C.SigningMode.THRESHOLD, signers=()
        )
        self.assertEqual(await self.validator.validate(draft, self.ctx), ["Select at least one signer"])

    async def test_check_raises_with_every_message(self):
        draft = PaymentDraft(account=self.alice, destination=self.alice, amount="abc")
        with self.assertRaises(ValidationError) as cm:
            await self.validator.check(draft, self.ctx)
        self.assertEqual(len(cm.exception.errors), 2)

    async def test_account_set_zero_is_a_change(self):
        draft = AccountSetDraft(account=self.alice, tick_size=0)
        self.assertEqual(await self.validator.validate(draft, self.ctx), [])
        draft = AccountSetDraft(account=self.alice, transfer_rate=0)
        self.assertEqual(await self.validator.validate(draft, self.ctx), [])

    async def test_account_set_with_nothing_to_change(self):
        errors = await self.validator.validate(AccountSetDraft(account=self.alice), self.ctx)
        self.assertEqual(errors, [ACCOUNT_SET_EMPTY_MSG])

    async def test_non_numeric_values_are_reported(self):
        errors = await self.validator.validate(AccountSetDraft(account=self.alice, tick_size="big"), self.ctx)
        self.assertEqual(errors, ["Tick size must be a valid number"])

        draft = PaymentDraft(account=self.alice, destination=self.bob, amount="1", ticket_sequence="seven")
        errors = await self.validator.validate(draft, self.ctx)
        self.assertEqual(errors, ["Ticket sequence must be a valid number"])

    async def test_check_that_raises_still_fails_validation(self):
        def broken(d, ctx):
            return int(d.memo)

        validator = PreflightValidator(self.validator.fetcher, {C.TxType.PAYMENT: Rules(checks=(broken,))})
        draft = PaymentDraft(account=self.alice, destination=self.bob, amount="1", memo="not a number")
        errors = await validator.validate(draft, self.ctx)
        self.assertEqual(len(errors), 1)
        self.assertTrue(errors[0].startswith("Malformed Payment field"))
