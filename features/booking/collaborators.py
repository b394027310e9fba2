"""
Collaborators the booking service calls after its own work is committed.

Each one is a small class with a single method so tests and other front ends
can swap it out. ``safe_call`` wraps every call: a failing collaborator is
logged and never undoes or fails the booking operation.
"""

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from core import models
from core.database import SessionLocal
from core.models import AuditOutcome, DocumentStatus
from features.booking.documents import render_booking_form

log = logging.getLogger(__name__)


class DbAuditSink:
    """Writes audit rows in a session of its own so FAILED entries survive a rolled back operation."""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def record(self, action: str, entity_id: Optional[str], user_id: Optional[int], status: AuditOutcome,
               details: Optional[Dict[str, Any]] = None, error: Optional[str] = None) -> None:
        db = self.session_factory()
        try:
            db.add(models.AuditLog(
                action=action,
                entity="Booking",
                entity_id=str(entity_id) if entity_id is not None else None,
                user_id=user_id,
                status=AuditOutcome(status).value,
                details=details,
                error=error,
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class PdfDocumentRenderer:
    def __init__(self, output_dir: Optional[str] = None):
        self.output_dir = output_dir

    def render(self, snapshot: Dict[str, Any]) -> str:
        if self.output_dir:
            return render_booking_form(snapshot, self.output_dir)
        return render_booking_form(snapshot)


class BookingDocumentStatusLookup:
    """Document state is owned by the KYC and finance letter workflows; the booking row mirrors it."""

    def lookup(self, booking: models.Booking) -> Dict[str, str]:
        return {
            'kyc': booking.kyc_status or DocumentStatus.NOT_SUBMITTED.value,
            'finance_letter': booking.finance_letter_status or DocumentStatus.NOT_SUBMITTED.value,
        }


class TokenCodeGenerator:
    def generate(self, booking_id: int) -> str:
        return f"BKQR-{booking_id}-{secrets.token_urlsafe(12)}"


@dataclass
class BookingCollaborators:
    audit: Any = field(default_factory=DbAuditSink)
    renderer: Any = field(default_factory=PdfDocumentRenderer)
    document_status: Any = field(default_factory=BookingDocumentStatusLookup)
    codes: Any = field(default_factory=TokenCodeGenerator)


def safe_call(description: str, fn: Callable, *args, **kwargs):
    """Runs a collaborator call; on failure logs it and returns None."""
    try:
        return fn(*args, **kwargs)
    except Exception:
        log.exception("Collaborator call failed: %s", description)
        return None
