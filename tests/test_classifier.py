from unittest import TestCase

import txflow.constants as C
from txflow.classifier import ResultClassifier, diagnostic_for
from txflow.errors import LedgerRejection


class TestResultClassifier(TestCase):
    def setUp(self):
        self.classifier = ResultClassifier()

    def test_validated_success(self):
        env = self.classifier.classify(
            {"hash": "AB", "validated": True, "ledger_index": 1001, "meta": {"TransactionResult": "tesSUCCESS"}}
        )
        self.assertEqual(env.outcome, C.Outcome.SUCCESS)
        self.assertTrue(env.is_final)
        self.assertTrue(env.is_success)
        self.assertEqual(env.tx_hash, "AB")
        self.assertEqual(env.ledger_index, 1001)

    def test_meta_result_wins_over_preliminary(self):
        env = self.classifier.classify(
            {"engine_result": "tesSUCCESS", "validated": True, "meta": {"TransactionResult": "tecPATH_DRY"}}
        )
        self.assertEqual(env.engine_result, "tecPATH_DRY")
        self.assertEqual(env.outcome, C.Outcome.REJECTED)
        self.assertTrue(env.is_final)

    def test_malformed_and_failed_are_rejected(self):
        for code in ("temBAD_AMOUNT", "tefBAD_QUORUM", "tefMAX_LEDGER"):
            env = self.classifier.classify({"engine_result": code})
            self.assertEqual(env.outcome, C.Outcome.REJECTED, code)
            self.assertTrue(env.is_final, code)

    def test_local_and_retry_codes_are_retryable(self):
        for code in ("telINSUF_FEE_P", "terPRE_SEQ", "terQUEUED"):
            env = self.classifier.classify({"engine_result": code})
            self.assertEqual(env.outcome, C.Outcome.RETRYABLE, code)
            self.assertFalse(env.is_final, code)

    def test_simulated_result_is_never_final(self):
        env = self.classifier.classify({"engine_result": "tesSUCCESS", "applied": False}, simulated=True)
        self.assertEqual(env.outcome, C.Outcome.SUCCESS)
        self.assertFalse(env.is_final)
        self.assertTrue(env.simulated)
        env = self.classifier.classify({"engine_result": "temBAD_FEE"}, simulated=True)
        self.assertFalse(env.is_final)

    def test_unrecognized_shape(self):
        env = self.classifier.classify({"something": "else"})
        self.assertEqual(env.outcome, C.Outcome.UNKNOWN)
        self.assertEqual(env.engine_result, "unknown")
        self.assertTrue(env.diagnostic)

    def test_unknown_codes_get_a_diagnostic(self):
        self.assertIn("tecSOMETHING_NEW", diagnostic_for("tecSOMETHING_NEW"))
        self.assertIn("xyzWHAT", diagnostic_for("xyzWHAT"))
        self.assertEqual(diagnostic_for("tefBAD_QUORUM"), "The combined signer weight does not meet the quorum.")

    def test_raise_for_outcome(self):
        ok = self.classifier.classify({"engine_result": "tesSUCCESS"})
        self.assertIs(ok.raise_for_outcome(), ok)
        rejected = self.classifier.classify({"engine_result": "tefBAD_QUORUM"})
        with self.assertRaises(LedgerRejection) as cm:
            rejected.raise_for_outcome()
        self.assertIs(cm.exception.envelope, rejected)
        self.assertIn("tefBAD_QUORUM", str(cm.exception))
