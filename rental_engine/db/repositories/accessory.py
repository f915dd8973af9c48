from typing import Dict, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from rental_engine.db.models import Accessory


class AccessoryRepository:
    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, accessory_id: str) -> Optional[Accessory]:
        return self.session.get(Accessory, accessory_id)

    def get_many(self, accessory_ids: Iterable[str]) -> Dict[str, Accessory]:
        ids = list(accessory_ids)
        if not ids:
            return {}
        rows = self.session.execute(select(Accessory).where(Accessory.id.in_(ids))).scalars()
        return {accessory.id: accessory for accessory in rows}

    def create_accessory(self, accessory: Accessory) -> None:
        self.session.add(accessory)
        self.session.flush()

    def lock_for_booking(self, accessory_id: str) -> bool:
        result = self.session.execute(
            update(Accessory)
            .where(Accessory.id == accessory_id)
            .values(booking_version=Accessory.booking_version + 1)
        )
        return result.rowcount > 0
