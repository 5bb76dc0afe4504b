# app/models/sale.py
from sqlalchemy import Column, String, Integer, DateTime, Text, Numeric, Index

from app.db.base import Base
from app.utils.timestamps import utc_now


class Sale(Base):
    """
    Modèle d'une vente (en-tête uniquement, les lignes restent gérées
    par le service des ventes)
    """
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sale_number = Column(String(50), nullable=True, unique=True)
    sale_date = Column(DateTime, nullable=True)

    # Montants
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    final_amount = Column(Numeric(12, 2), nullable=True)

    payment_method = Column(String(30), default="cash", comment="cash, card, mobile_money, credit")
    status = Column(String(30), default="completed", comment="pending, completed, cancelled, refunded")

    # Client
    customer_name = Column(String(100), nullable=True)
    customer_phone = Column(String(20), nullable=True)
    customer_email = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_sales_updated_at_id", "updated_at", "id"),
    )

    def __repr__(self):
        return f"<Sale {self.id} {self.total_amount}>"
