from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TABLE_STATUS_AVAILABLE = "available"
TABLE_STATUS_OCCUPIED = "occupied"
TABLE_STATUS_RESERVED = "reserved"
TABLE_STATUS_MAINTENANCE = "maintenance"

TABLE_STATUSES = (
    TABLE_STATUS_AVAILABLE,
    TABLE_STATUS_OCCUPIED,
    TABLE_STATUS_RESERVED,
    TABLE_STATUS_MAINTENANCE,
)


class DiningTable(db.Model):
    """
    Restaurant table.

    LIFECYCLE:
    - available -> occupied when an order attaches (current_order_id = latest order)
    - occupied -> available when every open order is paid or folded into a
      settled combined order
    """
    __tablename__ = "dining_tables"
    __table_args__ = (
        db.UniqueConstraint("table_number", name="uq_dining_tables_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    table_number = db.Column(db.String(32), nullable=False)
    table_name = db.Column(db.String(255), nullable=True)
    capacity = db.Column(db.Integer, nullable=False, default=4)
    location = db.Column(db.String(100), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=TABLE_STATUS_AVAILABLE, index=True)

    # Plain reference (no FK): orders already point at tables
    current_order_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<DiningTable id={self.id} number={self.table_number!r} status={self.status}>"

    def release(self) -> None:
        self.status = TABLE_STATUS_AVAILABLE
        self.current_order_id = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "table_number": self.table_number,
            "table_name": self.table_name,
            "capacity": self.capacity,
            "location": self.location,
            "status": self.status,
            "current_order_id": self.current_order_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
