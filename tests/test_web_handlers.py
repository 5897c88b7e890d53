import unittest

from domain.interest import MS_PER_DAY
from domain.repositories import StoreFailure
from infrastructure.db.kv_store_memory import InMemoryKeyValueStore
from infrastructure.db.staking_repository_kv import KeyValueStakingRepository
from interfaces.web.handlers import create_web_app

NOW = 1_700_000_000_000


class BrokenStore(InMemoryKeyValueStore):
    def get(self, key):
        raise StoreFailure("database is locked")


class StakingRoutesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.now = NOW
        self.store = InMemoryKeyValueStore()
        self.repo = KeyValueStakingRepository(self.store)
        self.store.set("coins-U1", 100)

        app = create_web_app(self.repo, "test-secret", clock=lambda: self.now)
        app.testing = True
        self.client = app.test_client()
        self._login("U1")

    def _login(self, user_id: str) -> None:
        with self.client.session_transaction() as sess:
            sess["userinfo"] = {"id": user_id}

    def _stake(self, amount=50, lock_period="30d"):
        return self.client.post("/stake", json={"amount": amount, "lockPeriod": lock_period})

    def test_routes_redirect_to_login_without_session(self):
        client = create_web_app(self.repo, "test-secret").test_client()

        for method, path in (
            ("post", "/stake"),
            ("post", "/unstake"),
            ("get", "/stake/positions"),
            ("get", "/stake/positions/abc"),
            ("post", "/stake/claim"),
            ("get", "/stake/transactions"),
        ):
            response = getattr(client, method)(path)
            self.assertEqual(response.status_code, 302, path)
            self.assertTrue(response.headers["Location"].endswith("/login"))

        self.assertEqual(self.repo.get_balance("U1"), 100)

    def test_stake_success(self):
        response = self._stake()

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["message"], "Staked successfully")
        self.assertEqual(body["position"]["amount"], 50)
        self.assertEqual(body["position"]["lockPeriod"], "30d")
        self.assertEqual(body["position"]["startTime"], NOW)
        self.assertEqual(self.repo.get_balance("U1"), 50)

    def test_stake_accepts_form_data(self):
        response = self.client.post("/stake", data={"amount": "25.5", "lockPeriod": "180d"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.repo.get_balance("U1"), 74.5)

    def test_stake_validation_errors(self):
        cases = [
            ({"amount": 50, "lockPeriod": "1y"}, "Invalid lock period"),
            ({"amount": 5, "lockPeriod": "30d"}, "Invalid amount. Minimum stake is 10 coins."),
            ({"amount": "lots", "lockPeriod": "30d"}, "Invalid amount. Minimum stake is 10 coins."),
            ({"amount": 500, "lockPeriod": "30d"}, "Insufficient balance"),
            ({}, "Invalid lock period"),
            ({"amount": 1e26, "lockPeriod": "30d"}, "Insufficient balance"),
        ]
        for payload, message in cases:
            response = self.client.post("/stake", json=payload)
            self.assertEqual(response.status_code, 400, payload)
            self.assertEqual(response.get_json(), {"error": message})

        self.assertEqual(self.repo.get_balance("U1"), 100)

    def test_unstake_immediately_applies_penalty(self):
        position_id = self._stake().get_json()["position"]["positionId"]

        response = self.client.post("/unstake", json={"positionId": position_id})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.get_json(),
            {
                "message": "Unstaked successfully",
                "returned": 50,
                "principal": 50,
                "earnings": 0,
                "penaltyApplied": True,
            },
        )
        self.assertEqual(self.repo.get_balance("U1"), 100)

    def test_unstake_errors(self):
        response = self.client.post("/unstake", json={"positionId": "missing"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json(), {"error": "Invalid position"})

        response = self.client.post("/unstake", json={})
        self.assertEqual(response.status_code, 400)

    def test_positions_listing(self):
        position_id = self._stake().get_json()["position"]["positionId"]
        self.now = NOW + MS_PER_DAY

        body = self.client.get("/stake/positions").get_json()

        [position] = body["positions"]
        self.assertNotIn("message", body)
        self.assertEqual(position["positionId"], position_id)
        self.assertEqual(position["unlockTime"], NOW + 30 * MS_PER_DAY)
        self.assertTrue(position["isLocked"])
        self.assertGreater(position["currentEarnings"], 0)

    def test_positions_listing_migrates_legacy_stake(self):
        self.store.set("staked-U1", 200)
        self.store.set("lastStakeTime-U1", NOW - MS_PER_DAY)

        body = self.client.get("/stake/positions").get_json()

        self.assertEqual(body["message"], "Staking data migrated to new format")
        self.assertEqual(len(body["positions"]), 1)
        self.assertEqual(body["positions"][0]["amount"], 200)

        again = self.client.get("/stake/positions").get_json()
        self.assertNotIn("message", again)
        self.assertEqual(len(again["positions"]), 1)

    def test_position_detail(self):
        position_id = self._stake(100, "90d").get_json()["position"]["positionId"]

        response = self.client.get(f"/stake/positions/{position_id}")

        self.assertEqual(response.status_code, 200)
        position = response.get_json()["position"]
        self.assertEqual(position["lockPeriodDays"], 90)
        self.assertEqual(position["earlyWithdrawalPenalty"], 50)
        self.assertEqual(position["timeRemaining"], 90 * MS_PER_DAY)
        self.assertEqual(position["lastUpdate"], NOW)
        self.assertAlmostEqual(position["baseAPR"], 1825)

        missing = self.client.get("/stake/positions/unknown")
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.get_json(), {"error": "Position not found"})

    def test_claim_flow(self):
        position_id = self._stake(100, "180d").get_json()["position"]["positionId"]

        nothing = self.client.post("/stake/claim", json={"positionId": position_id})
        self.assertEqual(nothing.status_code, 400)
        self.assertEqual(nothing.get_json(), {"error": "No earnings to claim"})

        self.now = NOW + 20 * MS_PER_DAY
        response = self.client.post("/stake/claim", json={"positionId": position_id})

        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["message"], "Earnings claimed successfully")
        self.assertGreater(body["claimedAmount"], 0)
        self.assertEqual(body["newBalance"], body["claimedAmount"])
        self.assertEqual(body["position"]["lastClaimTime"], self.now)
        self.assertEqual(body["position"]["startTime"], NOW)

        invalid = self.client.post("/stake/claim", json={"positionId": "nope"})
        self.assertEqual(invalid.get_json(), {"error": "Invalid position"})

    def test_transactions_route_lists_only_own_entries(self):
        self._stake()
        self.store.set("coins-U2", 100)
        self._login("U2")
        self._stake(20)

        body = self.client.get("/stake/transactions").get_json()

        self.assertEqual(len(body["transactions"]), 1)
        self.assertEqual(body["transactions"][0]["senderId"], "U2")
        self.assertEqual(body["transactions"][0]["receiverId"], "MASTER")

    def test_store_failure_is_a_generic_500(self):
        app = create_web_app(KeyValueStakingRepository(BrokenStore()), "test-secret")
        client = app.test_client()
        with client.session_transaction() as sess:
            sess["userinfo"] = {"id": "U1"}

        with self.assertLogs("interfaces.web.handlers", level="ERROR"):
            response = client.get("/stake/positions")

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json(), {"error": "Internal server error"})


if __name__ == "__main__":
    unittest.main()
