# app/models/product.py
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, Numeric, Index

from app.db.base import Base
from app.utils.timestamps import utc_now


class Product(Base):
    """
    Modèle représentant un produit du catalogue.
    Seuls updated_at et l'identifiant servent à la synchronisation.
    """
    __tablename__ = "products"

    # =====================================
    # IDENTIFIANT UNIQUE
    # =====================================
    id = Column(Integer, primary_key=True, autoincrement=True)

    # =====================================
    # IDENTIFICATION DU PRODUIT
    # =====================================
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)
    barcode = Column(String(100), nullable=True, index=True, comment="Code-barres")
    category = Column(String(50), nullable=True, index=True)
    unit = Column(String(20), default="pcs")

    # =====================================
    # PRIX ET STOCK
    # =====================================
    purchase_price = Column(Numeric(12, 2), nullable=True)
    selling_price = Column(Numeric(12, 2), nullable=False)
    stock_quantity = Column(Numeric(15, 3), nullable=False, default=0)
    min_stock_level = Column(Numeric(15, 3), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)

    # =====================================
    # MÉTADONNÉES
    # =====================================
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_products_updated_at_id", "updated_at", "id"),
    )

    def __repr__(self):
        return f"<Product {self.id} {self.name}>"
