from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func

from app.database import Base


class InventoryHistory(Base):
    """
    Append-only audit entry for a stock change on one product.

    product_id is a plain indexed column rather than a foreign key:
    records outlive the product they describe.

    Attributes:
        id: Unique identifier for the record
        product_id: ID of the product whose stock changed
        change_amount: after_qty - before_qty
        reason: Why the stock changed ("update" when not given)
        before_qty: Stock before the change
        after_qty: Stock after the change
        change_date: When the change was recorded
    """
    __tablename__ = "inventory_history"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, nullable=False, index=True)
    change_amount = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=False, default="update")
    before_qty = Column(Integer, nullable=False)
    after_qty = Column(Integer, nullable=False)
    change_date = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return (
            f"<InventoryHistory(id={self.id}, product_id={self.product_id}, "
            f"change_amount={self.change_amount})>"
        )
