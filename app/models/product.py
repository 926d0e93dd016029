from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func

from app.database import Base


class Product(Base):
    """
    Product model representing an inventory item.

    Attributes:
        id: Unique identifier for the product
        name: Product name (unique; bulk imports skip names that already exist)
        unit: Unit of measure, e.g. "kg" or "pcs"
        category: Free-text category
        brand: Brand name
        stock: Current on-hand quantity (no floor is enforced)
        status: Free-text status, e.g. "active"
        image: Image URL or filename
        created_at: Timestamp when product was created
        updated_at: Timestamp when product was last updated
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True, index=True)
    unit = Column(String(50), nullable=True)
    category = Column(String(255), nullable=True, index=True)
    brand = Column(String(255), nullable=True)
    stock = Column(Integer, nullable=False, default=0)
    status = Column(String(50), nullable=True)
    image = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', stock={self.stock})>"
