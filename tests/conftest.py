import pytest
from fastapi.testclient import TestClient

from invoiceflow.core.auth import CurrentUser, create_access_token, hash_password
from invoiceflow.core.database import InvoiceflowDB
from invoiceflow.di.container import ServiceContainer
from invoiceflow.services.extraction import ExtractionClient
from invoiceflow.services.metrics import reset_metrics
from invoiceflow.services.storage import LocalObjectStorage

from main import create_app


PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def db(tmp_path):
    store = InvoiceflowDB(db_path=str(tmp_path / "invoiceflow.db"), dsn="")
    store.initialize()
    return store


@pytest.fixture
def seed(db):
    """Two companies: ACME with a full staff, Globex with a single admin."""
    acme = db.create_company({
        "name": "ACME Ltda",
        "tax_id": "12.345.678/0001-90",
        "auto_approve_limit": "1000.00",
        "default_debit_account": "4.1.01",
        "default_credit_account": "2.1.01",
    })
    globex = db.create_company({"name": "Globex", "auto_approve_limit": "0"})

    def _user(company, name, email, role):
        return db.create_user({
            "company_id": company["id"],
            "name": name,
            "email": email,
            "role": role,
            "password_hash": hash_password(PASSWORD),
        })

    return {
        "company": acme,
        "other_company": globex,
        "admin": _user(acme, "Ana Admin", "ana@acme.test", "super_admin"),
        "master": _user(acme, "Marcos Master", "marcos@acme.test", "master"),
        "approver": _user(acme, "Uma Approver", "uma@acme.test", "master"),
        "clerk": _user(acme, "Caio Clerk", "caio@acme.test", "user"),
        "outsider": _user(globex, "Otto Outsider", "otto@globex.test", "super_admin"),
    }


def as_actor(user) -> CurrentUser:
    return CurrentUser(
        user_id=user["id"],
        company_id=user["company_id"],
        role=user["role"],
        email=user["email"],
        name=user["name"],
    )


@pytest.fixture
def actors(seed):
    return {name: as_actor(seed[name]) for name in ("admin", "master", "approver", "clerk", "outsider")}


@pytest.fixture
def container(db, tmp_path):
    return ServiceContainer(
        db,
        storage=LocalObjectStorage(str(tmp_path / "storage"), "http://files.test/storage"),
        extraction=ExtractionClient(webhook_url=""),
    )


@pytest.fixture
def client(container):
    return TestClient(create_app(container=container))


@pytest.fixture
def auth_headers(seed):
    def _headers(name):
        user = seed[name]
        token = create_access_token(user["id"], user["email"], user["company_id"], user["role"])
        return {"Authorization": f"Bearer {token}"}
    return _headers
