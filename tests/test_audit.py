import json

from invoiceflow.core.audit import AuditAction, AuditEntry, AuditRecorder


def test_checksum_detects_changes():
    entry = AuditEntry(
        company_id="CMP-1",
        actor_id="USR-1",
        invoice_id="INV-1",
        action=AuditAction.APPROVE_INVOICE.value,
        new_values={"approval_status": "approved"},
    )
    assert entry.verify()

    entry.new_values["approval_status"] = "rejected"
    assert not entry.verify()


def test_entries_round_trip_through_store(db, seed):
    recorder = AuditRecorder(db)
    company_id = seed["company"]["id"]

    stored = recorder.record(
        company_id=company_id,
        actor_id=seed["admin"]["id"],
        action=AuditAction.UPDATE_COMPANY_CONFIG,
        resource_type="company",
        resource_id=company_id,
        old_values={"auto_approve_limit": 1000.0},
        new_values={"auto_approve_limit": 2500.0},
    )

    [loaded] = recorder.query(company_id)
    assert loaded.id == stored.id
    assert loaded.new_values == {"auto_approve_limit": 2500.0}
    assert loaded.verify()


def test_invoice_entries_default_resource(db, seed):
    entry = AuditRecorder(db).record(
        company_id=seed["company"]["id"],
        actor_id=None,
        action=AuditAction.ROUTE_INVOICE,
        invoice_id="INV-9",
    )

    assert entry.resource_type == "invoice"
    assert entry.resource_id == "INV-9"


def test_integrity_check_flags_tampered_rows(db, seed):
    recorder = AuditRecorder(db)
    company_id = seed["company"]["id"]
    first = recorder.record(company_id, seed["admin"]["id"], AuditAction.CREATE_USER, new_values={"role": "user"})
    recorder.record(company_id, seed["admin"]["id"], AuditAction.UPDATE_USER, new_values={"role": "master"})

    assert recorder.verify_integrity(company_id)["integrity_ok"] is True

    with db.connect() as conn:
        conn.execute(
            "UPDATE audit_log SET new_values = ? WHERE id = ?",
            (json.dumps({"role": "super_admin"}), first.id),
        )
        conn.commit()

    report = recorder.verify_integrity(company_id)
    assert report["integrity_ok"] is False
    assert report["tampered"] == [first.id]
    assert report["valid"] == 1


def test_failed_write_does_not_raise(db, seed, monkeypatch):
    def broken(_payload):
        raise RuntimeError("disk full")

    monkeypatch.setattr(db, "append_audit_entry", broken)

    assert AuditRecorder(db).record(seed["company"]["id"], None, AuditAction.DELETE_INVOICE) is None


def test_workflow_trail_is_complete_and_valid(container, actors, db, seed):
    lifecycle = container.lifecycle()
    invoice = lifecycle.create(actors["clerk"], {
        "invoice_number": "NF-77",
        "supplier_name": "Transportadora Rápida",
        "total_amount": "3200.00",
    }).invoice
    lifecycle.edit(actors["clerk"], invoice.id, {"po_number": "PO-2026-19"})
    lifecycle.reject(actors["master"], invoice.id, {"reason": "PO not found"})

    trail = db.list_audit_entries(seed["company"]["id"], invoice_id=invoice.id, newest_first=False)

    assert [e["action"] for e in trail] == ["create_invoice", "update_invoice", "reject_invoice"]
    assert {e["actor_id"] for e in trail} == {seed["clerk"]["id"], seed["master"]["id"]}
    assert trail[2]["new_values"]["rejection_reason"] == "PO not found"
    assert container.audit().verify_integrity(seed["company"]["id"])["integrity_ok"] is True
