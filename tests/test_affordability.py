from unittest import TestCase

from txflow.affordability import AffordabilityChecker
from txflow.errors import AffordabilityError
from txflow.models import CanonicalOperation
from tests.fakes import RESERVE_BASE, RESERVE_INC, make_context

ALICE = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"
BOB = "rPT1Sjq2YGrBMTttX4GZHjKu9dyfzbpAYe"
ISSUER = "rf1BiGeXwwQoi8Z2ueFYTEXSwuJYfV2Jpn"


def payment(amount, fee=10):
    return CanonicalOperation.from_dict(
        {
            "TransactionType": "Payment",
            "Account": ALICE,
            "Destination": BOB,
            "Amount": amount,
            "Fee": str(fee),
            "Sequence": 5,
            "LastLedgerSequence": 1020,
        }
    )


class TestAffordability(TestCase):
    def setUp(self):
        self.checker = AffordabilityChecker()

    def test_boundary_is_inclusive(self):
        owner_count = 2
        reserve = RESERVE_BASE + RESERVE_INC * owner_count
        ctx = make_context(ALICE, balance=reserve + 10 + 5_000_000, owner_count=owner_count)
        # Lands exactly on the reserve
        self.assertTrue(self.checker.is_affordable(ctx, 10, 5_000_000))
        # One drop past it
        self.assertFalse(self.checker.is_affordable(ctx, 10, 5_000_001))
        self.assertFalse(self.checker.is_affordable(ctx, 11, 5_000_000))

    def test_new_objects_raise_the_reserve(self):
        ctx = make_context(ALICE, balance=RESERVE_BASE + 10)
        self.assertTrue(self.checker.is_affordable(ctx, 10, 0))
        self.assertFalse(self.checker.is_affordable(ctx, 10, 0, new_objects=1))

    def test_check_raises_with_amounts(self):
        ctx = make_context(ALICE, balance=RESERVE_BASE + 1000)
        self.checker.check(payment("990"), ctx)
        with self.assertRaises(AffordabilityError) as cm:
            self.checker.check(payment("991"), ctx)
        self.assertIn("Insufficient XRP balance", str(cm.exception))
        self.assertEqual(cm.exception.available, RESERVE_BASE + 1000)
        self.assertEqual(cm.exception.required, RESERVE_BASE + 1001)

    def test_issued_payment_needs_a_trust_line(self):
        ctx = make_context(ALICE, trust_lines=[])
        with self.assertRaises(AffordabilityError) as cm:
            self.checker.check(payment({"currency": "USD", "issuer": ISSUER, "value": "5"}), ctx)
        self.assertIn("No USD trust line", str(cm.exception))

    def test_issued_payment_limited_by_line_balance(self):
        line = {"account": ISSUER, "currency": "USD", "balance": "4.5", "limit": "100"}
        ctx = make_context(ALICE, trust_lines=[line])
        with self.assertRaises(AffordabilityError) as cm:
            self.checker.check(payment({"currency": "USD", "issuer": ISSUER, "value": "5"}), ctx)
        self.assertIn("Insufficient USD balance", str(cm.exception))
        self.checker.check(payment({"currency": "USD", "issuer": ISSUER, "value": "4.5"}), ctx)

    def test_issuer_sending_its_own_currency(self):
        ctx = make_context(ALICE, trust_lines=[])
        self.checker.check(payment({"currency": "USD", "issuer": ALICE, "value": "1000000"}), ctx)

    def test_issued_payment_still_pays_the_fee(self):
        ctx = make_context(ALICE, balance=RESERVE_BASE + 5, trust_lines=[])
        with self.assertRaises(AffordabilityError):
            self.checker.check(payment({"currency": "USD", "issuer": ALICE, "value": "1"}), ctx)
