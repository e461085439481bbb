from decimal import Decimal

import pytest

from invoiceflow.core.auth import authenticate
from invoiceflow.services.companies import bootstrap_company
from invoiceflow.services.errors import ForbiddenError, ValidationError


def test_bootstrap_creates_company_and_admin(db):
    result = bootstrap_company(
        db,
        name="Nova Ltda",
        admin_name="Nadia",
        admin_email=" Nadia@Nova.test ",
        admin_password="bootstrap-pass",
        auto_approve_limit="250",
    )

    assert result["company"]["auto_approve_limit"] == 250.0
    admin = authenticate(db, "nadia@nova.test", "bootstrap-pass")
    assert admin["id"] == result["admin_id"]
    assert admin["role"] == "super_admin"
    assert admin["company_id"] == result["company"]["id"]


def test_bootstrap_refuses_existing_email_and_bad_limit(db, seed):
    with pytest.raises(ValidationError, match="already exists"):
        bootstrap_company(db, "Copy", "Ana", "ana@acme.test", "whatever-pass")
    with pytest.raises(ValidationError):
        bootstrap_company(db, "Bad", "Bea", "bea@bad.test", "whatever-pass", auto_approve_limit="lots")


def test_config_update_is_audited(container, actors, db, seed):
    companies = container.companies()

    updated = companies.update_config(actors["admin"], {"auto_approve_limit": "1500.50", "default_debit_account": "4.1.99"})

    assert updated["auto_approve_limit"] == 1500.5
    assert companies.get_company(seed["company"]["id"]).auto_approve_limit == Decimal("1500.50")
    [entry] = db.list_audit_entries(seed["company"]["id"], action="update_company_config")
    assert entry["old_values"] == {"auto_approve_limit": 1000.0, "default_debit_account": "4.1.01"}
    assert entry["new_values"] == {"auto_approve_limit": 1500.5, "default_debit_account": "4.1.99"}


def test_config_update_needs_super_admin_and_fields(container, actors):
    companies = container.companies()

    with pytest.raises(ForbiddenError):
        companies.update_config(actors["master"], {"auto_approve_limit": 10})
    with pytest.raises(ValidationError, match="No configuration fields"):
        companies.update_config(actors["admin"], {})


def test_clearing_the_limit_disables_company_auto_approval(container, actors, seed):
    companies = container.companies()
    companies.update_config(actors["admin"], {"auto_approve_limit": None})

    assert companies.get_company(seed["company"]["id"]).auto_approve_limit == Decimal("0.00")
    result = container.lifecycle().create(actors["clerk"], {
        "invoice_number": "NF-limit",
        "supplier_name": "Oficina",
        "total_amount": "50",
    })
    assert result.invoice.approval_status == "pending"
