# Overview: Sequential receipt and invoice numbering for sales.

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


RECEIPT_SEQUENCE = "RECEIPT"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Atomically allocate the next document number for a type (e.g. RCP-000042).

    The UPDATE ... SET next_number = next_number + 1 takes the row lock, so
    concurrent checkouts get distinct numbers.

    NOTE: must be the first write of the surrounding transaction: losing the
    first-insert race rolls the session back before retrying the UPDATE.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
            next_num = 1
        except IntegrityError:
            db.session.rollback()
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            db.session.flush()
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(document_type=document_type)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{next_num:0{pad}d}"


def next_receipt_number() -> str:
    return next_document_number(
        document_type=RECEIPT_SEQUENCE,
        prefix=current_app.config.get("RECEIPT_PREFIX", "RCP"),
    )


def invoice_number_for(receipt_number: str) -> str:
    """Wholesale sales print an invoice carrying the receipt's sequence number."""
    receipt_prefix = current_app.config.get("RECEIPT_PREFIX", "RCP")
    invoice_prefix = current_app.config.get("INVOICE_PREFIX", "INV")
    if receipt_number.startswith(f"{receipt_prefix}-"):
        return f"{invoice_prefix}-{receipt_number[len(receipt_prefix) + 1:]}"
    return f"{invoice_prefix}-{receipt_number}"
