# Overview: Pytest coverage for the JSON API; status codes and error bodies.

"""
API Route Tests

Drives the blueprints through the Flask test client:
- 201/200 on success
- 400 for invalid input, 404 for missing records, 409 for conflicts
- Rejected account quotes return the quote so the till can re-split
"""

import pytest


def _draft(total_cents):
    return {"lines": [{"product_ref": "SKU-001", "quantity": 1, "unit_price_cents": total_cents}]}


class TestSystemRoutes:

    def test_health(self, client, db_session, branch):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["branches"] == 1

    def test_require_json(self, client, db_session):
        response = client.post("/api/accounts", data="not json", content_type="text/plain")
        assert response.status_code == 400


class TestAccountRoutes:

    def test_open_and_get(self, client, db_session):
        response = client.post("/api/accounts", json={
            "first_name": "Thandi", "last_name": "Mokoena",
            "credit_limit_cents": 3000, "opening_balance_cents": 5000,
        })
        assert response.status_code == 201
        account = response.get_json()["account"]
        assert account["available_cents"] == 8000

        response = client.get(f"/api/accounts/{account['id']}")
        assert response.status_code == 200
        assert response.get_json()["account"]["balance_cents"] == 5000

    def test_duplicate_account_number(self, client, db_session):
        payload = {"first_name": "Thandi", "last_name": "Mokoena", "account_number": "ACC-0042"}
        assert client.post("/api/accounts", json=payload).status_code == 201

        response = client.post("/api/accounts", json=payload)
        assert response.status_code == 409
        assert response.get_json()["code"] == "CONFLICT"

    def test_missing_account(self, client, db_session):
        response = client.get("/api/accounts/99999")
        assert response.status_code == 404
        assert response.get_json()["code"] == "ACCOUNT_NOT_FOUND"

    def test_quote(self, client, db_session, account):
        response = client.post(f"/api/accounts/{account.id}/quote", json={"amount_cents": 10000})
        assert response.status_code == 200
        quote = response.get_json()["quote"]
        assert quote["is_valid"] is False
        assert quote["reason"] == "ExceedsCreditLimit"
        assert quote["max_possible_payment_cents"] == 8000
        assert quote["remaining_needs_other_payment_cents"] == 2000

    def test_quote_rejects_decimal_amount(self, client, db_session, account):
        response = client.post(f"/api/accounts/{account.id}/quote", json={"amount_cents": 100.5})
        assert response.status_code == 400

    def test_payment_and_statement(self, client, db_session, account):
        response = client.post(f"/api/accounts/{account.id}/payments", json={
            "amount_cents": 2500, "payment_method": "cash",
        })
        assert response.status_code == 201
        assert response.get_json()["account"]["balance_cents"] == 7500

        response = client.get(f"/api/accounts/{account.id}/statement")
        assert response.status_code == 200


class TestCheckoutRoutes:

    def test_split_checkout(self, client, db_session, branch, account, cash_session):
        response = client.post("/api/checkout", json={
            "branch_id": branch.id,
            "cashier_name": "Sipho",
            "draft": _draft(11500),
            "allocations": [
                {"method": "account", "amount_cents": 8000, "customer_id": account.id},
                {"method": "cash", "amount_cents": 5000},
            ],
        })
        assert response.status_code == 201
        body = response.get_json()
        assert body["needs_reconciliation"] is False
        assert body["sale"]["payment_status"] == "completed"
        assert body["sale"]["change_cents"] == 1500
        assert body["allocation"]["state"]["step"] == "Done"

        sale_id = body["sale"]["id"]
        response = client.get(f"/api/checkout/sales/{sale_id}")
        assert response.status_code == 200
        assert response.get_json()["refunded_cents"] == 0

    def test_rejected_account_leg_returns_quote(self, client, db_session, branch, account):
        response = client.post("/api/checkout", json={
            "branch_id": branch.id,
            "draft": _draft(11500),
            "allocations": [
                {"method": "account", "amount_cents": 10000, "customer_id": account.id},
                {"method": "cash", "amount_cents": 1500},
            ],
        })
        assert response.status_code == 409
        body = response.get_json()
        assert body["code"] == "ExceedsCreditLimit"
        assert body["quote"]["max_possible_payment_cents"] == 8000
        assert body["allocation"]["remaining_cents"] == 11500

        assert client.get("/api/checkout/sales/needs-reconciliation").get_json()["count"] == 0

    def test_incomplete_allocation(self, client, db_session, branch):
        response = client.post("/api/checkout", json={
            "branch_id": branch.id,
            "draft": _draft(11500),
            "allocations": [{"method": "cash", "amount_cents": 8000}],
        })
        assert response.status_code == 400
        assert response.get_json()["code"] == "INCOMPLETE_ALLOCATION"

    def test_over_allocation(self, client, db_session, branch):
        response = client.post("/api/checkout/preview", json={
            "draft": _draft(5000),
            "allocations": [{"method": "card", "amount_cents": 6000}],
        })
        assert response.status_code == 400
        assert response.get_json()["code"] == "OVER_ALLOCATION"

    def test_preview_writes_nothing(self, client, db_session, branch):
        response = client.post("/api/checkout/preview", json={
            "draft": _draft(5000),
            "allocations": [{"method": "cash", "amount_cents": 2000}],
        })
        assert response.status_code == 200
        body = response.get_json()
        assert body["allocation"]["remaining_cents"] == 3000
        assert body["allocation"]["is_ready"] is False

    def test_malformed_draft_line(self, client, db_session, branch):
        response = client.post("/api/checkout", json={
            "branch_id": branch.id,
            "draft": {"lines": ["x"]},
            "allocations": [{"method": "cash", "amount_cents": 100}],
        })
        assert response.status_code == 400
        assert response.get_json()["code"] == "VALIDATION_ERROR"

    def test_branch_required(self, client, db_session):
        response = client.post("/api/checkout", json={"draft": _draft(100), "allocations": []})
        assert response.status_code == 400

    def test_refund(self, client, db_session, branch, cash_session):
        sale = client.post("/api/checkout", json={
            "branch_id": branch.id,
            "draft": _draft(5000),
            "allocations": [{"method": "cash", "amount_cents": 5000}],
        }).get_json()["sale"]

        response = client.post(f"/api/checkout/sales/{sale['id']}/refunds", json={
            "amount_cents": 2000, "method": "cash", "reason": "Damaged",
        })
        assert response.status_code == 201
        assert response.get_json()["refunded_cents"] == 2000

        response = client.post(f"/api/checkout/sales/{sale['id']}/refunds", json={
            "amount_cents": 3001, "method": "cash", "reason": "Damaged",
        })
        assert response.status_code == 400
        assert response.get_json()["code"] == "REFUND_ERROR"


class TestLaybyeRoutes:

    def test_deposit_below_minimum(self, client, db_session, branch, account, due_in):
        response = client.post("/api/laybye", json={
            "branch_id": branch.id,
            "customer_id": account.id,
            "deposit_cents": 5000,
            "due_date": due_in(14).isoformat(),
            "draft": _draft(50000),
        })
        assert response.status_code == 400
        body = response.get_json()
        assert body["code"] == "DEPOSIT_BELOW_MINIMUM"
        assert body["minimum_deposit_cents"] == 10000

    def test_create_pay_and_stats(self, client, db_session, branch, account, cash_session, due_in):
        response = client.post("/api/laybye", json={
            "branch_id": branch.id,
            "customer_id": account.id,
            "deposit_cents": 10000,
            "due_date": due_in(14).isoformat(),
            "draft": _draft(50000),
            "deposit_allocations": [
                {"method": "account", "amount_cents": 4000, "customer_id": account.id},
                {"method": "cash", "amount_cents": 6000},
            ],
        })
        assert response.status_code == 201
        laybye = response.get_json()["laybye"]
        assert laybye["remaining_balance_cents"] == 40000
        assert laybye["status"] == "open"

        response = client.post(f"/api/laybye/{laybye['id']}/payments", json={"amount_cents": 40000, "method": "card"})
        assert response.status_code == 201
        assert response.get_json()["laybye"]["status"] == "paid_off"

        response = client.post(f"/api/laybye/{laybye['id']}/payments", json={"amount_cents": 100, "method": "cash"})
        assert response.status_code == 409

        stats = client.get(f"/api/laybye/stats?branch_id={branch.id}").get_json()["stats"]
        assert stats["by_status"]["paid_off"] == 1

    def test_validate(self, client, db_session, account, due_in):
        response = client.post("/api/laybye/validate", json={
            "customer_id": account.id,
            "deposit_cents": 10000,
            "due_date": due_in(3).isoformat(),
            "draft": _draft(50000),
        })
        assert response.status_code == 400
        assert response.get_json()["code"] == "DUE_DATE_TOO_SOON"

    def test_bad_due_date(self, client, db_session, account):
        response = client.post("/api/laybye/validate", json={
            "customer_id": account.id,
            "deposit_cents": 10000,
            "due_date": "next friday",
            "draft": _draft(50000),
        })
        assert response.status_code == 400

    def test_missing_laybye(self, client, db_session):
        assert client.get("/api/laybye/99999").status_code == 404

    def test_validate_rejects_malformed_lines(self, client, db_session, account, due_in):
        response = client.post("/api/laybye/validate", json={
            "customer_id": account.id,
            "deposit_cents": 10000,
            "due_date": due_in(14).isoformat(),
            "draft": {"lines": [7]},
        })
        assert response.status_code == 400
        assert response.get_json()["code"] == "VALIDATION_ERROR"

    def test_validate_rejects_non_numeric_customer(self, client, db_session, due_in):
        response = client.post("/api/laybye/validate", json={
            "customer_id": "abc",
            "deposit_cents": 10000,
            "due_date": due_in(14).isoformat(),
            "draft": _draft(50000),
        })
        assert response.status_code == 400
        assert response.get_json()["code"] == "VALIDATION_ERROR"

    def test_create_coerces_string_customer_id(self, client, db_session, branch, account, due_in):
        response = client.post("/api/laybye", json={
            "branch_id": branch.id,
            "customer_id": str(account.id),
            "deposit_cents": 10000,
            "due_date": due_in(14).isoformat(),
            "draft": _draft(50000),
        })
        assert response.status_code == 201
        assert response.get_json()["laybye"]["customer_account_id"] == account.id

    def test_update_details(self, client, db_session, branch, account, due_in):
        laybye = client.post("/api/laybye", json={
            "branch_id": branch.id,
            "customer_id": account.id,
            "deposit_cents": 10000,
            "due_date": due_in(14).isoformat(),
            "draft": _draft(50000),
        }).get_json()["laybye"]

        response = client.patch(f"/api/laybye/{laybye['id']}", json={"due_date": due_in(28).isoformat(), "notes": "Payday"})
        assert response.status_code == 200
        body = response.get_json()["laybye"]
        assert body["due_date"] == due_in(28).isoformat()
        assert body["notes"] == "Payday"

        response = client.patch(f"/api/laybye/{laybye['id']}", json={"due_date": due_in(45).isoformat()})
        assert response.status_code == 400
        assert response.get_json()["code"] == "DUE_DATE_TOO_LATE"

        response = client.patch(f"/api/laybye/{laybye['id']}", json={"customer_id": "abc"})
        assert response.status_code == 400

        response = client.patch(f"/api/laybye/{laybye['id']}", json={"customer_id": 99999})
        assert response.status_code == 404

        client.post(f"/api/laybye/{laybye['id']}/cancel", json={"reason": "Customer changed mind"})
        response = client.patch(f"/api/laybye/{laybye['id']}", json={"notes": "too late"})
        assert response.status_code == 409

        assert client.patch("/api/laybye/99999", json={"notes": "x"}).status_code == 404


class TestCashupRoutes:

    def test_session_lifecycle(self, client, db_session, branch):
        response = client.post("/api/cashup/sessions", json={
            "branch_id": branch.id, "opening_cents": 100000, "cashier_name": "Sipho",
        })
        assert response.status_code == 201
        session_id = response.get_json()["session"]["id"]

        response = client.post("/api/cashup/sessions", json={
            "branch_id": branch.id, "opening_cents": 100000, "cashier_name": "Naledi",
        })
        assert response.status_code == 409
        assert response.get_json()["code"] == "SESSION_ALREADY_ACTIVE"

        response = client.post(f"/api/cashup/sessions/{session_id}/reconcile", json={})
        assert response.status_code == 409

        close = {"actual_cents": 90000, "notes": "End of day"}
        response = client.post(f"/api/cashup/sessions/{session_id}/close", json=close)
        assert response.status_code == 200
        summary = response.get_json()
        assert summary["expected_cents"] == 100000
        assert summary["variance"]["classification"] == "significant"
        assert summary["variance"]["variance_type"] == "shortage"

        assert client.post(f"/api/cashup/sessions/{session_id}/close", json=close).status_code == 200
        response = client.post(f"/api/cashup/sessions/{session_id}/close", json={"actual_cents": 1})
        assert response.status_code == 409

        response = client.post(f"/api/cashup/sessions/{session_id}/reconcile", json={"notes": "ok"})
        assert response.status_code == 200
        assert response.get_json()["session"]["status"] == "reconciled"

    def test_current_session(self, client, db_session, branch):
        assert client.get(f"/api/cashup/branches/{branch.id}/current").get_json()["session"] is None

    def test_classify(self, client, db_session):
        response = client.get("/api/cashup/classify?variance_cents=400")
        assert response.status_code == 200
        assert response.get_json()["classification"] == "minor"

    def test_missing_session(self, client, db_session):
        assert client.get("/api/cashup/sessions/99999").status_code == 404


class TestVarianceRoutes:

    def test_record_and_follow_up(self, client, db_session, branch, cash_session):
        client.post(f"/api/cashup/sessions/{cash_session.id}/close", json={"actual_cents": 99000})

        response = client.post(f"/api/variances/sessions/{cash_session.id}", json={"category": "counting_error"})
        assert response.status_code == 201
        variance = response.get_json()["variance"]
        assert variance["amount_cents"] == 1000

        response = client.post(f"/api/variances/{variance['id']}/actions", json={
            "action_type": "resolved", "action_by": "Manager",
        })
        assert response.status_code == 201

        body = client.get(f"/api/variances/{variance['id']}").get_json()
        assert body["resolution_status"] == "resolved"

        stats = client.get(f"/api/variances/stats?branch_id={branch.id}").get_json()["stats"]
        assert stats["unresolved_count"] == 0

    @pytest.mark.parametrize("payload", [
        {"variance_type": "shortage", "amount_cents": 100, "category": "unknown"},
    ])
    def test_session_id_required(self, client, db_session, payload):
        assert client.post("/api/variances", json=payload).status_code == 400
