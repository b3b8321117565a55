"""Tests for the parent endpoints: children, dashboard, subscription status."""

from learnsmart.db import accounts as accounts_db
from learnsmart.db import learning as learning_db


class TestChildren:

    def test_add_children_in_order(self, client, make_user, run_db):
        parent = make_user("parent")
        h = parent["headers"]
        first = client.post("/api/parent/children", headers=h, json={
            "email": "first@example.com", "password": "password123", "first_name": "Ann", "grade": "2",
        })
        assert first.status_code == 200
        second = client.post("/api/parent/children", headers=h, json={
            "email": "second@example.com", "password": "password123", "first_name": "Ben",
        })
        ids = [first.json()["child"]["id"], second.json()["child"]["id"]]
        assert second.json()["children"] == ids

        record = run_db(lambda db: accounts_db.get_student(db, ids[0]))
        assert record["parent_id"] == parent["id"]
        assert record["grade"] == "2"

        listed = client.get("/api/parent/children", headers=h).json()["children"]
        assert [c["first_name"] for c in listed] == ["Ann", "Ben"]

        # The child can sign in with the credentials the parent chose
        res = client.post("/api/auth/login", json={"email": "first@example.com", "password": "password123"})
        assert res.json()["user"]["role"] == "student"

    def test_students_cannot_add_children(self, client, make_user):
        student = make_user("student")
        res = client.post("/api/parent/children", headers=student["headers"], json={
            "email": "c@example.com", "password": "password123",
        })
        assert res.status_code == 403


class TestDashboard:

    def test_child_progress_and_achievements(self, client, make_user, run_db):
        parent = make_user("parent")
        child = client.post("/api/parent/children", headers=parent["headers"], json={
            "email": "kid@example.com", "password": "password123",
        }).json()["child"]
        run_db(lambda db: learning_db.award_achievement(db, child["id"], "quiz", "Perfect quiz"))

        body = client.get("/api/parent/dashboard", headers=parent["headers"]).json()
        assert len(body["children"]) == 1
        entry = body["children"][0]
        assert entry["child"]["id"] == child["id"]
        assert entry["learning_path"]["has_initial_assessment"] is False
        assert [a["title"] for a in entry["achievements"]] == ["Perfect quiz"]
        assert entry["completed_lessons"] == 0


class TestSubscription:

    def test_free_then_paid(self, client, make_user, run_db):
        parent = make_user("parent")
        body = client.get("/api/parent/subscription", headers=parent["headers"]).json()
        assert body["subscription_status"] == "free"
        assert body["is_premium"] is False

        run_db(lambda db: accounts_db.set_subscription_status(db, parent["id"], "paid", "42"))
        body = client.get("/api/parent/subscription", headers=parent["headers"]).json()
        assert body == {"subscription_status": "paid", "is_premium": True, "customer_id": "42"}
