# app/models/stock_movement.py
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Numeric, Index

from app.db.base import Base
from app.utils.timestamps import utc_now


class StockMovement(Base):
    """
    Modèle pour suivre les mouvements de stock
    """
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)

    quantity = Column(Numeric(15, 3), nullable=False)
    movement_type = Column(
        String(50),
        nullable=False,
        index=True,
        comment="initial, purchase, sale, adjustment, return, transfer, expiry, correction"
    )
    reason = Column(String(200), nullable=True)
    reference = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_stock_movements_updated_at_id", "updated_at", "id"),
    )

    def __repr__(self):
        return f"<StockMovement {self.movement_type} {self.quantity} for {self.product_id}>"
