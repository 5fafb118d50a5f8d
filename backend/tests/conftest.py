import os

# Must be set before config.py is imported by the application modules
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from database import Base, build_engine, get_db
from main import app
from models import Client, DocumentKind, Project
from seed import seed_studio_settings
from services import documents, tree
from services.notifications import get_notifier


class RecordingSink:
    """Keeps emitted notifications in memory."""

    def __init__(self):
        self.events = []

    def emit(self, **event):
        self.events.append(event)

    @property
    def types(self):
        return [event["type"] for event in self.events]


class FailingSink:
    def __init__(self):
        self.calls = 0

    def emit(self, **event):
        self.calls += 1
        raise RuntimeError("mail server unreachable")


# --- Database ---

@pytest.fixture
def session_factory():
    """Fresh in-memory database per test."""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = factory()
    seed_studio_settings(db)
    db.close()
    yield factory
    engine.dispose()


@pytest.fixture
def file_session_factory(tmp_path):
    """Database file, for tests that need independent connections."""
    engine = build_engine(f"sqlite:///{tmp_path / 'studio.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = factory()
    seed_studio_settings(db)
    db.close()
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def failing_sink():
    return FailingSink()


@pytest.fixture
def api_client(db_session, sink):
    """TestClient wired to the test session and a recording notification sink."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: sink
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


# --- Clients and projects ---

def make_project(db, code, company_name, name="Brand refresh"):
    client = db.query(Client).filter(Client.code == code).first()
    if not client:
        client = Client(code=code, company_name=company_name)
        db.add(client)
        db.flush()
    project = Project(client_id=client.id, name=name)
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


@pytest.fixture
def nova_project(db_session):
    return make_project(db_session, "NOVA", "Studio Nova")


@pytest.fixture
def acme_project(db_session):
    return make_project(db_session, "ACME", "Acme Inc.", name="Catalogue")


# --- Documents ---

@pytest.fixture
def nova_quote(db_session, nova_project):
    """Draft quote with one section holding 2 × 100$ (subtotal 200)."""
    quote = documents.create_document(db_session, DocumentKind.quote, nova_project.id)
    section = tree.add_section(db_session, quote.id, "Design")
    tree.add_item(db_session, DocumentKind.quote, section.id, {"name": "Logo", "quantity": 2, "unit_price": 100})
    db_session.refresh(quote)
    return quote


@pytest.fixture
def nova_invoice(db_session, nova_project):
    """Draft standalone invoice with one 2 × 100$ line."""
    invoice = documents.create_document(db_session, DocumentKind.invoice, nova_project.id)
    tree.add_item(db_session, DocumentKind.invoice, invoice.id, {"description": "Logo", "quantity": 2, "unit_price": 100})
    db_session.refresh(invoice)
    return invoice
