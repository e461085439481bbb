from decimal import Decimal

import pytest

from invoiceflow.services.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def lifecycle(container):
    return container.lifecycle()


@pytest.fixture
def level_one(db, seed):
    return db.create_approval_rule({
        "company_id": seed["company"]["id"],
        "approval_level": 1,
        "min_amount": "0",
        "max_amount": "5000",
        "approver_id": seed["approver"]["id"],
    })


def _payload(number="NF-1", amount="2500.00", **extra):
    payload = {"invoice_number": number, "supplier_name": "Papelaria Central", "total_amount": amount}
    payload.update(extra)
    return payload


def _audit(db, seed, invoice_id):
    return db.list_audit_entries(seed["company"]["id"], invoice_id=invoice_id)


class TestCreate:
    def test_manual_invoice_is_routed_and_audited_once(self, lifecycle, actors, db, seed, level_one):
        result = lifecycle.create(actors["clerk"], _payload())

        invoice = result.invoice
        assert invoice.total_amount == Decimal("2500.00")
        assert invoice.created_by == seed["clerk"]["id"]
        assert invoice.debit_account_code == "4.1.01"
        entries = _audit(db, seed, invoice.id)
        assert [e["action"] for e in entries] == ["create_invoice"]
        assert entries[0]["new_values"]["routing"]["decision"] == "pending_approval"

    def test_duplicate_number_conflicts(self, lifecycle, actors):
        lifecycle.create(actors["clerk"], _payload())

        with pytest.raises(ConflictError, match="already exists"):
            lifecycle.create(actors["master"], _payload(amount="10"))

    def test_same_number_allowed_in_another_company(self, lifecycle, actors):
        lifecycle.create(actors["clerk"], _payload())

        result = lifecycle.create(actors["outsider"], _payload())

        assert result.invoice.company_id == actors["outsider"].company_id

    @pytest.mark.parametrize("payload", [
        {"supplier_name": "X", "total_amount": "10"},
        _payload(amount="-1"),
        _payload(amount="abc"),
        _payload(unexpected="field"),
    ])
    def test_invalid_payloads(self, lifecycle, actors, db, seed, payload):
        with pytest.raises(ValidationError):
            lifecycle.create(actors["clerk"], payload)
        assert db.count_invoices(seed["company"]["id"]) == 0


class TestEdit:
    def test_edit_pending_invoice_records_before_and_after(self, lifecycle, actors, db, seed, level_one):
        created = lifecycle.create(actors["clerk"], _payload()).invoice

        updated = lifecycle.edit(actors["clerk"], created.id, {"description": "Toner", "tax_amount": "12.5"})

        assert updated.description == "Toner"
        assert updated.tax_amount == Decimal("12.50")
        entry = db.list_audit_entries(seed["company"]["id"], invoice_id=created.id, action="update_invoice")[0]
        assert entry["old_values"]["description"] is None
        assert entry["new_values"]["description"] == "Toner"
        assert entry["new_values"]["tax_amount"] == 12.5

    def test_decided_invoice_cannot_be_edited(self, lifecycle, actors, seed):
        created = lifecycle.create(actors["clerk"], _payload(amount="100")).invoice
        assert created.approval_status == "auto_approved"

        with pytest.raises(ConflictError, match="already been processed"):
            lifecycle.edit(actors["clerk"], created.id, {"description": "late change"})

    def test_required_fields_cannot_be_cleared(self, lifecycle, actors, level_one):
        created = lifecycle.create(actors["clerk"], _payload()).invoice

        with pytest.raises(ValidationError, match="cannot be cleared"):
            lifecycle.edit(actors["clerk"], created.id, {"total_amount": None})

    def test_status_fields_are_not_editable(self, lifecycle, actors, level_one):
        created = lifecycle.create(actors["clerk"], _payload()).invoice

        with pytest.raises(ValidationError):
            lifecycle.edit(actors["clerk"], created.id, {"approval_status": "approved"})

    def test_renumbering_onto_existing_number_conflicts(self, lifecycle, actors, level_one):
        lifecycle.create(actors["clerk"], _payload(number="NF-1"))
        second = lifecycle.create(actors["clerk"], _payload(number="NF-2")).invoice

        with pytest.raises(ConflictError):
            lifecycle.edit(actors["clerk"], second.id, {"invoice_number": "NF-1"})


class TestUploadedInvoice:
    def test_without_extraction_waits_for_manual_entry(self, lifecycle, actors, level_one):
        result = lifecycle.register_upload(actors["clerk"], "http://files.test/a.pdf", "pdf")

        assert result.invoice.status == "pending_extraction"
        assert result.invoice.approval_status == "pending"
        assert result.outcome is None

        with pytest.raises(ValidationError, match="amount is required"):
            lifecycle.validate(actors["clerk"], result.invoice.id)

    def test_manual_amount_then_validate_routes(self, lifecycle, actors, db, seed, level_one):
        invoice_id = lifecycle.register_upload(actors["clerk"], "http://files.test/a.pdf", "pdf").invoice.id

        edited = lifecycle.edit(actors["clerk"], invoice_id, {"total_amount": "4200", "supplier_name": "Gráfica"})
        assert edited.status == "pending"

        result = lifecycle.validate(actors["clerk"], invoice_id)

        assert result.invoice.assigned_approver_id == seed["approver"]["id"]
        assert result.invoice.approval_level == 1
        actions = [e["action"] for e in _audit(db, seed, invoice_id)]
        assert actions[0] == "route_invoice"
        assert "upload_invoice" in actions

    def test_extracted_fields_are_mapped(self, lifecycle, actors):
        result = lifecycle.register_upload(
            actors["clerk"],
            "http://files.test/b.xml",
            "xml",
            extracted={"invoice_number": 4512, "supplier_cnpj": "11.222.333/0001-44", "total_amount": "750"},
        )

        invoice = result.invoice
        assert invoice.invoice_number == "4512"
        assert invoice.supplier_tax_id == "11.222.333/0001-44"
        assert invoice.approval_status == "auto_approved"
        assert result.accounting_entry.debit_amount == Decimal("750.00")


class TestDelete:
    def test_soft_delete_keeps_the_record(self, lifecycle, actors, db, seed, level_one):
        created = lifecycle.create(actors["clerk"], _payload()).invoice

        deleted = lifecycle.soft_delete(actors["master"], created.id, {"reason": "Duplicated upload"})

        assert deleted.status == "deleted"
        assert deleted.deleted_by == seed["master"]["id"]
        assert deleted.deletion_reason == "Duplicated upload"
        assert db.get_invoice(created.id) is not None

    def test_short_reason_is_rejected(self, lifecycle, actors, db, level_one):
        created = lifecycle.create(actors["clerk"], _payload()).invoice

        with pytest.raises(ValidationError, match="at least 5"):
            lifecycle.soft_delete(actors["master"], created.id, {"reason": " dup "})
        assert db.get_invoice(created.id)["status"] == "pending"

    def test_deleted_invoice_cannot_be_decided_or_deleted_again(self, lifecycle, actors, level_one):
        created = lifecycle.create(actors["clerk"], _payload()).invoice
        lifecycle.soft_delete(actors["master"], created.id, {"reason": "Wrong company"})

        with pytest.raises(ConflictError, match="deleted"):
            lifecycle.approve(actors["approver"], created.id)
        with pytest.raises(ConflictError, match="already deleted"):
            lifecycle.soft_delete(actors["master"], created.id, {"reason": "Wrong company"})

    def test_clerk_cannot_delete(self, lifecycle, actors, level_one):
        created = lifecycle.create(actors["clerk"], _payload()).invoice

        with pytest.raises(ForbiddenError):
            lifecycle.soft_delete(actors["clerk"], created.id, {"reason": "I changed my mind"})


class TestBoundaries:
    def test_clerk_cannot_decide_and_nothing_is_audited(self, lifecycle, actors, db, seed, level_one):
        created = lifecycle.create(actors["clerk"], _payload()).invoice
        before = len(_audit(db, seed, created.id))

        with pytest.raises(ForbiddenError):
            lifecycle.approve(actors["clerk"], created.id, {"notes": "self approval"})
        with pytest.raises(ForbiddenError):
            lifecycle.reject(actors["clerk"], created.id, {"reason": "nope"})

        assert len(_audit(db, seed, created.id)) == before
        assert db.get_invoice(created.id)["approval_status"] == "pending"

    def test_other_company_is_denied(self, lifecycle, actors, db, seed, level_one):
        created = lifecycle.create(actors["clerk"], _payload()).invoice

        with pytest.raises(ForbiddenError):
            lifecycle.get(actors["outsider"], created.id)
        with pytest.raises(ForbiddenError):
            lifecycle.approve(actors["outsider"], created.id, {"notes": "cross"})

        assert db.list_audit_entries(seed["other_company"]["id"]) == []
        assert db.get_invoice(created.id)["approval_status"] == "pending"

    def test_unknown_invoice(self, lifecycle, actors):
        with pytest.raises(NotFoundError):
            lifecycle.approve(actors["approver"], "INV-missing")


class TestReads:
    def test_detail_includes_history_and_entries(self, lifecycle, actors, level_one):
        created = lifecycle.create(actors["clerk"], _payload()).invoice
        lifecycle.approve(actors["approver"], created.id)

        detail = lifecycle.get(actors["clerk"], created.id)

        assert detail["invoice"]["approval_status"] == "approved"
        assert [e["action"] for e in detail["history"]] == ["approve_invoice", "create_invoice"]
        assert len(detail["accounting_entries"]) == 1
        assert detail["accounting_entries"][0]["debit_amount"] == 2500.0

    def test_list_filters_and_paginates(self, lifecycle, actors, level_one):
        for n in range(5):
            lifecycle.create(actors["clerk"], _payload(number=f"NF-{n}", amount="2000"))
        lifecycle.create(actors["clerk"], _payload(number="NF-small", amount="10", supplier_name="Padaria"))
        gone = lifecycle.create(actors["clerk"], _payload(number="NF-gone")).invoice
        lifecycle.soft_delete(actors["master"], gone.id, {"reason": "Test invoice"})

        page = lifecycle.list_invoices(actors["clerk"], approval_status="pending", page=2, limit=2)
        assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}
        assert len(page["invoices"]) == 2

        assert lifecycle.list_invoices(actors["clerk"])["pagination"]["total"] == 6
        assert lifecycle.list_invoices(actors["clerk"], status="deleted")["pagination"]["total"] == 1
        bakery = lifecycle.list_invoices(actors["clerk"], supplier_name="padar")
        assert [i["invoice_number"] for i in bakery["invoices"]] == ["NF-small"]
        assert lifecycle.list_invoices(actors["outsider"])["pagination"]["total"] == 0

    def test_list_rejects_bad_filters(self, lifecycle, actors):
        with pytest.raises(ValidationError):
            lifecycle.list_invoices(actors["clerk"], status="archived")
        with pytest.raises(ValidationError):
            lifecycle.list_invoices(actors["clerk"], date_from="19/10/2026")
