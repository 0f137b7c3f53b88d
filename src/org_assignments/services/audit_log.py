"""Append-only audit trail for org mutations."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select

from ..database import db
from ..models.audit import OrgAuditLogEntry
from ..models.types import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class AuditLog:
    """
    Writes and queries OrgAuditLogEntry rows.

    record() only adds and flushes: the entry joins the caller's open
    transaction and commits (or rolls back) together with the mutation it
    describes. Sequence numbers are allocated as max + 1 per company; two
    concurrent writers that pick the same number collide on the unique
    constraint and the loser's transaction is retried by its runner.
    """

    def record(
        self,
        company_id: int,
        action: str,
        entity_type: str,
        entity_id: int,
        actor: str | None = None,
        reason: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        related: dict[str, Any] | None = None,
    ) -> OrgAuditLogEntry:
        sequence = db.session.execute(
            select(func.coalesce(func.max(OrgAuditLogEntry.sequence), 0)).where(
                OrgAuditLogEntry.company_id == company_id
            )
        ).scalar_one() + 1

        entry = OrgAuditLogEntry(
            company_id=company_id,
            sequence=sequence,
            timestamp=utcnow(),
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            reason=reason,
            before=before,
            after=after,
            related=related,
        )
        db.session.add(entry)
        db.session.flush()

        logger.debug(
            f"Audit: company={company_id} seq={sequence} {action} "
            f"{entity_type}={entity_id} actor={actor}"
        )
        return entry

    def list_for_entity(self, entity_type: str, entity_id: int) -> list[OrgAuditLogEntry]:
        return list(
            db.session.execute(
                select(OrgAuditLogEntry)
                .where(
                    OrgAuditLogEntry.entity_type == entity_type,
                    OrgAuditLogEntry.entity_id == entity_id,
                )
                .order_by(OrgAuditLogEntry.company_id, OrgAuditLogEntry.sequence)
            ).scalars()
        )

    def list_for_company(
        self,
        company_id: int,
        since: datetime | None = None,
        until: datetime | None = None,
        action: str | None = None,
        limit: int = 100,
    ) -> list[OrgAuditLogEntry]:
        """Entries for a company in sequence order, optionally bounded in time."""
        query = select(OrgAuditLogEntry).where(OrgAuditLogEntry.company_id == company_id)
        if since is not None:
            query = query.where(OrgAuditLogEntry.timestamp >= ensure_utc(since))
        if until is not None:
            query = query.where(OrgAuditLogEntry.timestamp < ensure_utc(until))
        if action:
            query = query.where(OrgAuditLogEntry.action == action)
        query = query.order_by(OrgAuditLogEntry.sequence).limit(limit)
        return list(db.session.execute(query).scalars())

    def count(self, company_id: int) -> int:
        return db.session.execute(
            select(func.count(OrgAuditLogEntry.id)).where(
                OrgAuditLogEntry.company_id == company_id
            )
        ).scalar_one()
