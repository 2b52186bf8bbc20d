from unittest import TestCase

import httpx
from fastapi.testclient import TestClient
from xrpl.wallet import Wallet

import txflow.constants as C
from txflow.app import app
from txflow.signing import InMemoryKeyProvider, canonical_signer_order
from tests.fakes import FakeLedger, make_pipeline


class TestApp(TestCase):
    """Routes against a fake ledger. The lifespan (which probes rippled) is not run."""

    def setUp(self):
        self.alice = Wallet.create()
        self.bob = Wallet.create().address
        self.ledger = FakeLedger()
        self.ledger.add_account(self.alice.address, sequence=5, tickets={9})
        self.ledger.add_account(self.bob)
        self.keys = InMemoryKeyProvider({self.alice.address: self.alice})
        app.state.pipeline = make_pipeline(self.ledger, self.keys)
        self.client = TestClient(app)

    def post_payment(self, **fields):
        body = {"kind": "Payment", "account": self.alice.address, "fields": {"destination": self.bob, "amount": "1", **fields}}
        return self.client.post("/operations", json=body)

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_fees(self):
        data = self.client.get("/state/fees").json()
        self.assertEqual(data["base_fee"], 10)
        self.assertEqual(data["queue_utilization"], "0/2000")

    def test_context(self):
        data = self.client.get(f"/state/context/{self.alice.address}").json()
        self.assertEqual(data["sequence"], 5)
        self.assertEqual(data["tickets"], [9])
        self.assertFalse(data["master_disabled"])

    def test_context_for_missing_account(self):
        r = self.client.get(f"/state/context/{Wallet.create().address}")
        self.assertEqual(r.status_code, 422)

    def test_payment(self):
        r = self.post_payment(memo="hello")
        self.assertEqual(r.status_code, 200, r.text)
        data = r.json()
        self.assertEqual(data["engine_result"], "tesSUCCESS")
        self.assertEqual(data["outcome"], "Success")
        self.assertIn("awaiting validation", data["progress"])

        status = self.client.get(f"/operations/{data['tx_hash']}").json()
        self.assertEqual(status["engine_result"], "tesSUCCESS")
        self.assertEqual(status["run"]["state"], "CLASSIFIED")

        tracked = self.client.get(f"/state/tx/{data['tx_hash']}").json()
        self.assertEqual(tracked["history"][-1], "CLASSIFIED")

        events = self.client.get("/state/events").json()
        self.assertEqual(events[-1]["type"], "outcome")
        self.assertEqual(events[-1]["payload"]["engine_result"], "tesSUCCESS")

    def test_simulate(self):
        body = {"kind": "payment", "account": self.alice.address, "simulate": True, "fields": {"destination": self.bob, "amount": "1"}}
        data = self.client.post("/operations", json=body).json()
        self.assertTrue(data["simulated"])
        self.assertFalse(data["is_final"])
        self.assertEqual(self.ledger.count("submit"), 0)

    def test_validation_errors(self):
        r = self.post_payment(ticket_sequence=7)
        self.assertEqual(r.status_code, 422)
        self.assertEqual(r.json()["errors"], [f"Ticket Sequence 7 not found for account {self.alice.address}"])

        r = self.client.post("/operations", json={"kind": "Payment", "account": self.alice.address, "fields": {"nope": 1}})
        self.assertEqual(r.status_code, 422)
        self.assertEqual(r.json()["errors"], ["Unknown field for Payment: nope"])

    def test_affordability_error(self):
        r = self.post_payment(amount="1000")
        self.assertEqual(r.status_code, 402)
        self.assertEqual(r.json()["error"], "affordability")

    def test_signing_error(self):
        body = {
            "kind": "Payment",
            "account": self.alice.address,
            "fields": {"destination": self.bob, "amount": "1", "signing": "delegated"},
        }
        r = self.client.post("/operations", json=body)
        self.assertEqual(r.status_code, 409)

    def test_threshold_signing_config(self):
        signers = {w.address: w for w in (Wallet.create(), Wallet.create())}
        for address, wallet in signers.items():
            self.keys.add(address, wallet)
        acct = self.ledger.accounts[self.alice.address]
        acct.signer_quorum, acct.signer_entries = 2, {a: 1 for a in signers}
        body = {
            "kind": "Payment",
            "account": self.alice.address,
            "fields": {"destination": self.bob, "amount": "1", "signing": "threshold"},
            "signing_config": {
                "signers": [{"account": a, "weight": 1, "key_handle": a} for a in canonical_signer_order(signers)]
            },
        }
        r = self.client.post("/operations", json=body)
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["engine_result"], "tesSUCCESS")
        self.assertEqual(self.ledger.submitted[-1]["Fee"], "30")

    def test_status_unknown(self):
        self.ledger.submit_error = httpx.ReadTimeout("read timed out")
        r = self.post_payment()
        self.assertEqual(r.status_code, 504)
        data = r.json()
        self.assertEqual(data["error"], "status_unknown")

        pending = self.client.get(f"/operations/{data['tx_hash']}")
        self.assertEqual(pending.status_code, 202)
        self.assertEqual(pending.json()["run"]["state"], str(C.RunState.SUBMITTED))

    def test_network_error(self):
        self.ledger.submit_error = httpx.ConnectError("connection refused")
        r = self.post_payment()
        self.assertEqual(r.status_code, 502)
        self.assertTrue(r.json()["retryable"])

    def test_untracked_tx(self):
        self.assertEqual(self.client.get("/state/tx/" + "0" * 64).status_code, 404)

    def test_runs(self):
        self.post_payment()
        runs = self.client.get("/state/runs").json()
        self.assertEqual(runs[-1]["state"], "CLASSIFIED")
        self.assertEqual(runs[-1]["kind"], "Payment")

    def test_malformed_account(self):
        body = {"kind": "Payment", "account": "not-an-address", "fields": {"destination": self.bob, "amount": "1"}}
        r = self.client.post("/operations", json=body)
        self.assertEqual(r.status_code, 422)
        self.assertEqual(self.client.get("/state/context/not-an-address").status_code, 422)
