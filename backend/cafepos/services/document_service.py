# Overview: Allocation of human-readable document numbers.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence


def next_document_number(document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Allocate the next number for a document type (e.g. ORD-000042).

    Must run inside a transaction scope: the counter row is bumped with a
    single UPDATE so concurrent writers serialize on it, and the number is
    only consumed if the surrounding transaction commits.
    """
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        number = current - 1
    else:
        # First document of this type
        db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        db.session.flush()
        number = 1

    return f"{prefix}-{number:0{pad}d}"
