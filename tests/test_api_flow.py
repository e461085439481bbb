"""
End-to-end tests through the HTTP API.

Covers login, the role matrix, rule administration and the full
create -> route -> decide flow against a temporary SQLite store.
"""

PASSWORD = "correct-horse-battery"


def _create_rule(client, headers, **body):
    return client.post("/api/approval-rules", json=body, headers=headers)


def _create_invoice(client, headers, number, amount, **extra):
    body = {"invoice_number": number, "supplier_name": "Fornecedor SA", "total_amount": amount}
    body.update(extra)
    return client.post("/api/invoices", json=body, headers=headers)


class TestSystemEndpoints:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["backend"] == "sqlite"

    def test_metrics_count_requests(self, client):
        client.get("/health")

        assert client.get("/metrics").json()["requests"]["total"] >= 1

    def test_metrics_group_requests_by_route(self, client, auth_headers):
        headers = auth_headers("clerk")
        client.get("/api/invoices/INV-missing-1", headers=headers)
        client.get("/api/invoices/INV-missing-2", headers=headers)

        by_endpoint = client.get("/metrics").json()["requests"]["by_endpoint"]

        assert by_endpoint["GET /api/invoices/{invoice_id}"] == 2
        assert not any("INV-missing" in key for key in by_endpoint)


class TestAuth:
    def test_login_and_me(self, client, seed):
        response = client.post("/api/auth/login", json={"email": "UMA@acme.test", "password": PASSWORD})

        assert response.status_code == 200
        session = response.json()
        assert session["token_type"] == "Bearer"
        assert session["user"]["id"] == seed["approver"]["id"]
        assert "password_hash" not in session["user"]

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {session['access_token']}"})
        assert me.json()["company"]["auto_approve_limit"] == 1000.0

    def test_wrong_password(self, client, seed):
        response = client.post("/api/auth/login", json={"email": "uma@acme.test", "password": "nope-nope"})

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    def test_missing_and_garbage_tokens(self, client):
        assert client.get("/api/invoices").status_code == 401
        response = client.get("/api/invoices", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid token"

    def test_deactivated_user_loses_access(self, client, db, seed, auth_headers):
        headers = auth_headers("clerk")
        db.update_user(seed["clerk"]["id"], is_active=False)

        assert client.get("/api/invoices", headers=headers).status_code == 401

    def test_malformed_login_is_a_validation_error(self, client):
        response = client.post("/api/auth/login", json={"email": "not-an-email"})

        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"


class TestApprovalRules:
    def test_admin_manages_rules(self, client, seed, auth_headers):
        admin = auth_headers("admin")

        created = _create_rule(
            client, admin,
            approval_level=1, min_amount=0, max_amount=5000, approver_id=seed["approver"]["id"],
        )
        assert created.status_code == 201
        rule = created.json()["rule"]
        assert rule["max_amount"] == 5000.0
        assert rule["approval_deadline_hours"] == 48

        updated = client.put(f"/api/approval-rules/{rule['id']}", json={"max_amount": 8000}, headers=admin)
        assert updated.status_code == 200
        assert updated.json()["rule"]["max_amount"] == 8000.0

        deleted = client.delete(f"/api/approval-rules/{rule['id']}", headers=admin)
        assert deleted.status_code == 200
        assert client.get("/api/approval-rules", headers=admin).json()["rules"] == []
        listed = client.get("/api/approval-rules", params={"include_inactive": True}, headers=admin).json()
        assert listed["rules"][0]["is_active"] is False

    def test_duplicate_level_conflicts_even_when_inactive(self, client, seed, auth_headers):
        admin = auth_headers("admin")
        first = _create_rule(client, admin, approval_level=1, min_amount=0, auto_approve=True).json()["rule"]
        client.delete(f"/api/approval-rules/{first['id']}", headers=admin)

        response = _create_rule(client, admin, approval_level=1, min_amount=100, auto_approve=True)

        assert response.status_code == 409
        assert response.json()["error"] == "CONFLICT"

    def test_overlap_is_returned_as_warning(self, client, seed, auth_headers):
        admin = auth_headers("admin")
        _create_rule(client, admin, approval_level=1, min_amount=0, max_amount=5000, approver_id=seed["approver"]["id"])

        response = _create_rule(client, admin, approval_level=2, min_amount=4000, auto_approve=True)

        assert response.status_code == 201
        assert [w["type"] for w in response.json()["warnings"]] == ["overlap"]

    def test_invalid_bands_and_approvers(self, client, seed, auth_headers):
        admin = auth_headers("admin")

        assert _create_rule(client, admin, approval_level=1, min_amount=500, max_amount=100).status_code == 400
        assert _create_rule(client, admin, approval_level=0, min_amount=0).status_code == 400
        assert _create_rule(
            client, admin, approval_level=1, min_amount=0, approver_id=seed["outsider"]["id"],
        ).status_code == 400

    def test_role_matrix(self, client, seed, auth_headers):
        body = {"approval_level": 1, "min_amount": 0, "auto_approve": True}

        assert _create_rule(client, auth_headers("master"), **body).status_code == 403
        assert _create_rule(client, auth_headers("clerk"), **body).status_code == 403
        assert client.get("/api/approval-rules", headers=auth_headers("master")).status_code == 200
        assert client.get("/api/approval-rules", headers=auth_headers("clerk")).status_code == 403

    def test_other_company_rule_is_forbidden(self, client, seed, auth_headers):
        rule = _create_rule(client, auth_headers("outsider"), approval_level=1, min_amount=0, auto_approve=True)
        rule_id = rule.json()["rule"]["id"]

        response = client.put(f"/api/approval-rules/{rule_id}", json={"min_amount": 10}, headers=auth_headers("admin"))

        assert response.status_code == 403


class TestInvoiceFlow:
    def test_routing_scenario(self, client, seed, auth_headers):
        admin = auth_headers("admin")
        clerk = auth_headers("clerk")
        _create_rule(client, admin, approval_level=1, min_amount=0, max_amount=5000, approver_id=seed["approver"]["id"])

        pending = _create_invoice(client, clerk, "NF-3000", 3000).json()
        assert pending["invoice"]["approval_status"] == "pending"
        assert pending["invoice"]["assigned_approver_id"] == seed["approver"]["id"]
        assert pending["routing"] == {"decision": "pending_approval", "rule_level": 1, "approver_id": seed["approver"]["id"]}

        small = _create_invoice(client, clerk, "NF-500", 500).json()
        assert small["routing"]["decision"] == "auto_approved"
        assert small["accounting_entry"]["credit_amount"] == 500.0

        unmatched = _create_invoice(client, clerk, "NF-7000", 7000).json()
        assert unmatched["routing"] == {"decision": "pending_approval", "rule_level": None, "approver_id": None}

        _create_rule(client, admin, approval_level=2, min_amount=5000, auto_approve=True)
        created = _create_invoice(client, clerk, "NF-6000", 6000).json()
        assert created["invoice"]["approval_status"] == "pending"
        assert created["routing"] == {"decision": "pending_approval", "rule_level": 2, "approver_id": None}
        assert "accounting_entry" not in created

        by_rule = client.post(f"/api/invoices/{created['invoice']['id']}/validate", headers=clerk).json()
        assert by_rule["invoice"]["approval_status"] == "auto_approved"
        assert by_rule["routing"]["decision"] == "auto_approved_by_rule"
        assert by_rule["routing"]["rule_level"] == 2
        assert by_rule["accounting_entry"]["debit_amount"] == 6000.0
        assert by_rule["accounting_entry"]["credit_amount"] == 6000.0

    def test_approve_twice_conflicts(self, client, seed, auth_headers):
        approver = auth_headers("approver")
        _create_rule(
            client, auth_headers("admin"),
            approval_level=1, min_amount=0, approver_id=seed["approver"]["id"],
        )
        invoice_id = _create_invoice(client, auth_headers("clerk"), "NF-1", "2500.00").json()["invoice"]["id"]

        first = client.post(f"/api/invoices/{invoice_id}/approve", json={"notes": "conferido"}, headers=approver)
        second = client.post(f"/api/invoices/{invoice_id}/approve", headers=approver)

        assert first.status_code == 200
        assert first.json()["invoice"]["approval_status"] == "approved"
        assert second.status_code == 409
        assert second.json()["message"] == "Invoice has already been processed"
        detail = client.get(f"/api/invoices/{invoice_id}", headers=approver).json()
        assert len(detail["accounting_entries"]) == 1

    def test_clerk_cannot_approve_or_reject(self, client, auth_headers):
        clerk = auth_headers("clerk")
        invoice_id = _create_invoice(client, clerk, "NF-2", 2500).json()["invoice"]["id"]

        assert client.post(f"/api/invoices/{invoice_id}/approve", headers=clerk).status_code == 403
        response = client.post(f"/api/invoices/{invoice_id}/reject", json={"reason": "x"}, headers=clerk)
        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

    def test_reject_validate_edit_and_delete(self, client, auth_headers):
        clerk = auth_headers("clerk")
        master = auth_headers("master")
        invoice_id = _create_invoice(client, clerk, "NF-3", 2500).json()["invoice"]["id"]

        edited = client.put(f"/api/invoices/{invoice_id}", json={"total_amount": 900}, headers=clerk)
        assert edited.status_code == 200
        validated = client.post(f"/api/invoices/{invoice_id}/validate", headers=clerk).json()
        assert validated["invoice"]["approval_status"] == "auto_approved"
        assert client.post(f"/api/invoices/{invoice_id}/reject", json={"reason": "late"}, headers=master).status_code == 409

        other_id = _create_invoice(client, clerk, "NF-4", 2500).json()["invoice"]["id"]
        assert client.post(f"/api/invoices/{other_id}/reject", json={}, headers=master).status_code == 400
        rejected = client.post(f"/api/invoices/{other_id}/reject", json={"reason": "No PO"}, headers=master)
        assert rejected.json()["invoice"]["approval_status"] == "rejected"

        assert client.request("DELETE", f"/api/invoices/{other_id}", json={"reason": "x"}, headers=master).status_code == 400
        deleted = client.request("DELETE", f"/api/invoices/{other_id}", json={"reason": "Duplicate"}, headers=master)
        assert deleted.json()["invoice"]["status"] == "deleted"

        listed = client.get("/api/invoices", headers=clerk).json()
        assert [i["id"] for i in listed["invoices"]] == [invoice_id]

    def test_bad_invoice_payload(self, client, auth_headers):
        response = client.post("/api/invoices", json={"supplier_name": "X"}, headers=auth_headers("clerk"))

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert {e["field"] for e in body["context"]["errors"]} == {"invoice_number", "total_amount"}

    def test_cross_company_read_is_forbidden(self, client, auth_headers):
        invoice_id = _create_invoice(client, auth_headers("clerk"), "NF-5", 2500).json()["invoice"]["id"]

        assert client.get(f"/api/invoices/{invoice_id}", headers=auth_headers("outsider")).status_code == 403
        assert client.get("/api/invoices/INV-nope", headers=auth_headers("clerk")).status_code == 404

    def test_upload_without_extraction(self, client, auth_headers):
        response = client.post(
            "/api/invoices/upload",
            files={"file": ("nota.pdf", b"%PDF-1.4", "application/pdf")},
            headers=auth_headers("clerk"),
        )

        assert response.status_code == 201
        assert response.json()["next_action"] == "manual_entry"
        assert response.json()["invoice"]["status"] == "pending_extraction"


class TestCompanyAndUsers:
    def test_only_super_admin_updates_config(self, client, auth_headers):
        body = {"auto_approve_limit": 2500}

        assert client.put("/api/company/config", json=body, headers=auth_headers("master")).status_code == 403
        response = client.put("/api/company/config", json=body, headers=auth_headers("admin"))
        assert response.status_code == 200
        assert response.json()["company"]["auto_approve_limit"] == 2500.0

        routed = _create_invoice(client, auth_headers("clerk"), "NF-9", 2000).json()
        assert routed["routing"]["decision"] == "auto_approved"

    def test_negative_limit_is_rejected(self, client, auth_headers):
        response = client.put("/api/company/config", json={"auto_approve_limit": -1}, headers=auth_headers("admin"))

        assert response.status_code == 400

    def test_user_administration(self, client, seed, auth_headers):
        admin = auth_headers("admin")

        created = client.post(
            "/api/users",
            json={"name": "Nina", "email": "Nina@ACME.test", "role": "master", "password": "longenough"},
            headers=admin,
        )
        assert created.status_code == 201
        user = created.json()["user"]
        assert user["email"] == "nina@acme.test"

        duplicate = client.post("/api/users", json={"name": "Nina 2", "email": "nina@acme.test"}, headers=admin)
        assert duplicate.status_code == 409

        assert client.post("/api/users", json={"name": "X", "email": "x@acme.test"}, headers=auth_headers("master")).status_code == 403
        assert client.get("/api/users", headers=auth_headers("master")).status_code == 200
        assert client.get("/api/users", headers=auth_headers("clerk")).status_code == 403

        assert client.delete(f"/api/users/{seed['admin']['id']}", headers=admin).status_code == 400
        assert client.delete(f"/api/users/{user['id']}", headers=admin).json()["deactivated"] is True

        login = client.post("/api/auth/login", json={"email": "nina@acme.test", "password": "longenough"})
        assert login.status_code == 401


class TestNotificationsAndDashboard:
    def test_approver_inbox(self, client, seed, auth_headers):
        approver = auth_headers("approver")
        _create_rule(
            client, auth_headers("admin"),
            approval_level=1, min_amount=0, approver_id=seed["approver"]["id"],
        )
        _create_invoice(client, auth_headers("clerk"), "NF-10", 4000)

        inbox = client.get("/api/notifications", headers=approver).json()
        assert inbox["unread_count"] == 1
        assert inbox["notifications"][0]["type"] == "approval_required"

        assert client.post("/api/notifications", json={}, headers=approver).status_code == 400
        marked = client.post("/api/notifications", json={"mark_all_read": True}, headers=approver)
        assert marked.json() == {"updated": 1}
        assert client.get("/api/notifications", params={"unread_only": True}, headers=approver).json()["notifications"] == []

    def test_dashboard_metrics(self, client, seed, auth_headers):
        clerk = auth_headers("clerk")
        _create_rule(
            client, auth_headers("admin"),
            approval_level=1, min_amount=0, approver_id=seed["approver"]["id"],
        )
        _create_invoice(client, clerk, "NF-11", 100)
        _create_invoice(client, clerk, "NF-12", 4000)

        metrics = client.get("/api/dashboard/metrics", headers=auth_headers("approver")).json()
        assert metrics["total_invoices"] == 2
        assert metrics["auto_approved"] == 1
        assert metrics["pending_approval"] == 1
        assert metrics["my_pending_approvals"] == 1
        assert metrics["total_value"] == 4100.0

        assert "my_pending_approvals" not in client.get("/api/dashboard/metrics", headers=clerk).json()
