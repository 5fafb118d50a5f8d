import threading

import pytest
from sqlalchemy.orm import sessionmaker

from conftest import make_project
from database import Base, build_engine
from errors import Conflict, NotFound, ValidationError
from models import DocumentKind, Quote, Invoice
from seed import seed_studio_settings
from services import documents, numbering


def test_first_numbers_per_kind(db_session, nova_project):
    quote = documents.create_document(db_session, DocumentKind.quote, nova_project.id)
    invoice = documents.create_document(db_session, DocumentKind.invoice, nova_project.id)

    assert quote.number == "D-NOVA-001"
    assert invoice.number == "F-NOVA-001"


def test_sequences_are_per_client(db_session, nova_project, acme_project):
    first = documents.create_document(db_session, DocumentKind.quote, nova_project.id)
    other = documents.create_document(db_session, DocumentKind.quote, acme_project.id)
    second = documents.create_document(db_session, DocumentKind.quote, nova_project.id)

    assert [first.number, second.number] == ["D-NOVA-001", "D-NOVA-002"]
    assert other.number == "D-ACME-001"


def test_projects_of_the_same_client_share_a_sequence(db_session, nova_project):
    other_project = make_project(db_session, "NOVA", "Studio Nova", name="Packaging")

    documents.create_document(db_session, DocumentKind.quote, nova_project.id)
    quote = documents.create_document(db_session, DocumentKind.quote, other_project.id)

    assert quote.number == "D-NOVA-002"


def test_preview_does_not_reserve(db_session, nova_project):
    assert numbering.next_number(db_session, DocumentKind.quote, "NOVA") == "D-NOVA-001"
    assert numbering.next_number(db_session, DocumentKind.quote, "NOVA") == "D-NOVA-001"

    documents.create_document(db_session, DocumentKind.quote, nova_project.id)

    assert numbering.next_number(db_session, DocumentKind.quote, "NOVA") == "D-NOVA-002"


def test_preview_for_unknown_client(db_session):
    with pytest.raises(NotFound):
        numbering.next_number(db_session, DocumentKind.invoice, "NOPE")
    with pytest.raises(ValidationError):
        numbering.next_number(db_session, DocumentKind.invoice, " ")


def test_counter_is_seeded_from_existing_numbers(db_session, nova_project):
    # Imported before counters existed
    db_session.add(Quote(project_id=nova_project.id, number="D-NOVA-007"))
    db_session.add(Quote(project_id=nova_project.id, number="D-NOVA-legacy"))
    db_session.commit()

    quote = documents.create_document(db_session, DocumentKind.quote, nova_project.id)

    assert quote.number == "D-NOVA-008"


def test_number_widens_past_999(db_session, nova_project):
    db_session.add(Invoice(project_id=nova_project.id, number="F-NOVA-999"))
    db_session.commit()

    invoice = documents.create_document(db_session, DocumentKind.invoice, nova_project.id)

    assert invoice.number == "F-NOVA-1000"
    assert numbering.parse_sequence(DocumentKind.invoice, "NOVA", invoice.number) == 1000


def test_deleted_numbers_are_not_reused(db_session, nova_project):
    first = documents.create_document(db_session, DocumentKind.quote, nova_project.id)
    documents.delete_document(db_session, DocumentKind.quote, first.id)

    quote = documents.create_document(db_session, DocumentKind.quote, nova_project.id)

    assert quote.number == "D-NOVA-002"


def test_collisions_are_retried_then_reported(db_session, nova_project):
    documents.create_document(db_session, DocumentKind.quote, nova_project.id)
    attempts = []

    def build(number):
        attempts.append(number)
        quote = Quote(project_id=nova_project.id, number="D-NOVA-001")
        db_session.add(quote)
        return quote

    with pytest.raises(Conflict):
        numbering.create_numbered(db_session, DocumentKind.quote, "NOVA", build, attempts=3)

    assert len(attempts) == 3
    # Rolled back reservations leave the sequence untouched
    assert numbering.next_number(db_session, DocumentKind.quote, "NOVA") == "D-NOVA-002"


def test_concurrent_creations_get_distinct_numbers(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'numbers.db'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = factory()
    seed_studio_settings(setup)
    project_id = make_project(setup, "NOVA", "Studio Nova").id
    setup.close()

    numbers, errors = [], []
    lock = threading.Lock()

    def create_quotes():
        db = factory()
        try:
            for _ in range(3):
                quote = documents.create_document(db, DocumentKind.quote, project_id)
                with lock:
                    numbers.append(quote.number)
        except Exception as exc:
            errors.append(exc)
        finally:
            db.close()

    threads = [threading.Thread(target=create_quotes) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    engine.dispose()

    assert errors == []
    assert len(numbers) == 24
    assert sorted(numbers) == [f"D-NOVA-{n:03d}" for n in range(1, 25)]
