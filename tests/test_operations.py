from unittest import TestCase

import txflow.constants as C
from txflow.errors import ValidationError
from txflow.operations import (
    IssuedAmount,
    NFTokenMintDraft,
    PaymentDraft,
    TicketCreateDraft,
    draft_from_dict,
    draft_type,
)

ALICE = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
BOB = "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"


class TestDraftFromDict(TestCase):
    def test_kind_lookup_ignores_case(self):
        self.assertIs(draft_type("payment"), PaymentDraft)
        self.assertIs(draft_type("NFTokenMint"), NFTokenMintDraft)
        self.assertIs(draft_type("ticketcreate"), TicketCreateDraft)

    def test_unsupported_kind(self):
        with self.assertRaises(ValidationError) as cm:
            draft_type("AMMDeposit")
        self.assertIn("Unsupported operation kind", str(cm.exception))

    def test_issued_amount_becomes_typed(self):
        d = draft_from_dict(
            "Payment",
            {"account": ALICE, "destination": BOB, "amount": {"currency": "USD", "issuer": BOB, "value": "5"}},
        )
        self.assertIsInstance(d, PaymentDraft)
        self.assertEqual(d.amount, IssuedAmount(currency="USD", issuer=BOB, value="5"))
        self.assertEqual(d.issued_amount(), d.amount)

    def test_native_amount_is_not_issued(self):
        d = draft_from_dict("Payment", {"account": ALICE, "destination": BOB, "amount": "10"})
        self.assertIsNone(d.issued_amount())
        self.assertEqual(d.signing, C.SigningMode.DIRECT)

    def test_integer_fields_are_coerced(self):
        d = draft_from_dict(
            "Payment",
            {"account": ALICE, "destination": BOB, "amount": "1", "destination_tag": "42", "ticket_sequence": "7"},
        )
        self.assertEqual(d.destination_tag, 42)
        self.assertEqual(d.ticket_sequence, 7)

    def test_every_problem_reported_together(self):
        with self.assertRaises(ValidationError) as cm:
            draft_from_dict("Payment", {"destination": BOB, "colour": "red", "destination_tag": "abc"})
        errors = cm.exception.errors
        self.assertIn("Unknown field for Payment: colour", errors)
        self.assertIn("account is required", errors)
        self.assertIn("destination_tag must be a valid number", errors)
        self.assertEqual(len(errors), 3)
        self.assertTrue(str(cm.exception).startswith("Multiple errors:"))

    def test_signing_mode_and_signers(self):
        d = draft_from_dict(
            "TicketCreate",
            {"account": ALICE, "ticket_count": 2, "signing": "THRESHOLD", "signers": [BOB]},
        )
        self.assertEqual(d.signing, C.SigningMode.THRESHOLD)
        self.assertEqual(d.signers, (BOB,))

    def test_unknown_signing_mode(self):
        with self.assertRaises(ValidationError):
            draft_from_dict("TicketCreate", {"account": ALICE, "ticket_count": 2, "signing": "psychic"})

    def test_issued_amount_missing_issuer(self):
        with self.assertRaises(ValidationError) as cm:
            draft_from_dict("Payment", {"account": ALICE, "destination": BOB, "amount": {"currency": "USD", "value": "1"}})
        self.assertIn("issuer", str(cm.exception))
