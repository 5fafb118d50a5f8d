"""Per-client document numbers: D-NOVA-001 for quotes, F-NOVA-001 for invoices.

Allocation increments a DocumentCounter row in place. On PostgreSQL the UPDATE
takes a row lock, on SQLite it takes the database write lock; either way two
concurrent allocations for the same (kind, client) are serialized and never
see the same value. The unique constraint on `number` stays as a backstop:
create_numbered retries a bounded number of times if it is ever hit.
"""
import logging
import re
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import NUMBER_ALLOCATION_ATTEMPTS
from errors import Conflict, NotFound, ValidationError
from models import Client, DocumentCounter, DocumentKind
from services.lookup import DOCUMENT_MODELS, as_kind

logger = logging.getLogger(__name__)

PREFIXES = {
    DocumentKind.quote: "D",
    DocumentKind.invoice: "F",
}

NUMBER_WIDTH = 3


def format_number(kind, client_code: str, sequence: int) -> str:
    return f"{PREFIXES[as_kind(kind)]}-{client_code}-{sequence:0{NUMBER_WIDTH}d}"


def parse_sequence(kind, client_code: str, number: str) -> Optional[int]:
    """Sequence part of a number belonging to this (kind, client), else None."""
    pattern = rf"^{PREFIXES[as_kind(kind)]}-{re.escape(client_code)}-(\d+)$"
    match = re.match(pattern, number or "")
    return int(match.group(1)) if match else None


def require_client_code(db: Session, client_code: str) -> str:
    if not client_code or not client_code.strip():
        raise ValidationError("Client code is required")
    client_code = client_code.strip()
    if not db.query(Client.id).filter(Client.code == client_code).first():
        raise NotFound(f"Client {client_code} not found")
    return client_code


def scan_max_sequence(db: Session, kind, client_code: str) -> int:
    """Highest sequence among existing numbers for this (kind, client), 0 if none."""
    kind = as_kind(kind)
    model = DOCUMENT_MODELS[kind]
    prefix = f"{PREFIXES[kind]}-{client_code}-"
    numbers = db.query(model.number).filter(model.number.like(f"{prefix}%")).all()
    sequences = [parse_sequence(kind, client_code, number) for (number,) in numbers]
    return max([s for s in sequences if s is not None], default=0)


def _counter_filter(kind: DocumentKind, client_code: str):
    return (
        DocumentCounter.kind == kind.value,
        DocumentCounter.client_code == client_code,
    )


def next_number(db: Session, kind, client_code: str) -> str:
    """Preview the next number. Reserves nothing, so it may be taken by the time it is used."""
    kind = as_kind(kind)
    client_code = require_client_code(db, client_code)
    last_value = db.query(DocumentCounter.last_value).filter(*_counter_filter(kind, client_code)).scalar()
    current = max(last_value or 0, scan_max_sequence(db, kind, client_code))
    return format_number(kind, client_code, current + 1)


def allocate_number(db: Session, kind, client_code: str) -> str:
    """Reserve the next number inside the caller's transaction.

    The reservation only becomes durable when the caller commits; a rollback
    releases it.
    """
    kind = as_kind(kind)
    updated = (
        db.query(DocumentCounter)
        .filter(*_counter_filter(kind, client_code))
        .update({DocumentCounter.last_value: DocumentCounter.last_value + 1}, synchronize_session=False)
    )
    if updated:
        value = db.query(DocumentCounter.last_value).filter(*_counter_filter(kind, client_code)).scalar()
    else:
        # First document for this client since counters exist: seed from what is already stored
        value = scan_max_sequence(db, kind, client_code) + 1
        db.add(DocumentCounter(kind=kind.value, client_code=client_code, last_value=value))
        db.flush()
    return format_number(kind, client_code, value)


def create_numbered(
    db: Session,
    kind,
    client_code: str,
    build: Callable[[str], object],
    attempts: Optional[int] = None,
):
    """Allocate a number, build the document with it and commit, retrying on collisions.

    `build` receives the number, adds the new document to the session and
    returns it. It is called again on each retry, after a rollback, so it must
    re-read anything it copies from.
    """
    kind = as_kind(kind)
    attempts = attempts or NUMBER_ALLOCATION_ATTEMPTS

    for attempt in range(1, attempts + 1):
        try:
            number = allocate_number(db, kind, client_code)
            document = build(number)
            db.flush()
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(
                "Number collision for %s %s (attempt %d/%d)", kind.value, client_code, attempt, attempts
            )
            continue
        except Exception:
            db.rollback()
            raise

        db.refresh(document)
        logger.info("Created %s %s", kind.value, document.number)
        return document

    raise Conflict(
        f"Could not allocate a unique {kind.value} number for client {client_code} "
        f"after {attempts} attempts, please retry"
    )
