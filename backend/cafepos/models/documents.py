from __future__ import annotations

from ..extensions import db


class DocumentSequence(db.Model):
    """
    Counter per document type for human-readable numbers (e.g. ORD-000042).

    WHY: Timestamps collide under concurrent requests; a locked counter row
    does not.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_document_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
