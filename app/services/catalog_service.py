import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.models.catalog_item import CatalogItem
from app.models.roster_entry import RosterEntry

logger = logging.getLogger(__name__)


class CatalogService:
    """Item lookup and the enrolled-list (roster) mutation."""

    def __init__(self, session: Session):
        self.session = session

    def get_item(self, item_id: int) -> Optional[CatalogItem]:
        return self.session.get(CatalogItem, item_id)

    def roster(self, item_id: int) -> list[RosterEntry]:
        return self.session.exec(
            select(RosterEntry).where(RosterEntry.item_id == item_id)
        ).all()

    def is_enrolled(self, item_id: int, student_id: int) -> bool:
        return self.session.exec(
            select(RosterEntry)
            .where(RosterEntry.item_id == item_id)
            .where(RosterEntry.student_id == student_id)
        ).first() is not None

    def add_to_roster_if_absent(
        self,
        item_id: int,
        student_id: int,
        mode: Optional[str] = None,
        schedule: Optional[str] = None,
    ) -> bool:
        """Returns True when a new roster entry was written."""
        if self.is_enrolled(item_id, student_id):
            return False

        entry = RosterEntry(
            item_id=item_id,
            student_id=student_id,
            mode=mode,
            schedule=schedule,
            enrolled_at=datetime.utcnow(),
        )
        self.session.add(entry)
        try:
            self.session.commit()
        except IntegrityError:
            # another request appended the same student first
            self.session.rollback()
            logger.info(f"Student {student_id} already on roster of item {item_id}")
            return False

        logger.info(f"Student {student_id} added to roster of item {item_id}")
        return True
