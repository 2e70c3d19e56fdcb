from datetime import datetime

from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, Index
from TableModels.base import Base


class PurchaseLotRow(Base):
    """A fuel purchase for one vessel; remaining_quantity is the FIFO balance."""
    __tablename__ = 'purchase_lots'

    id = Column(Integer, primary_key=True, autoincrement=True)
    vessel_id = Column(Integer, nullable=False)
    supplier_id = Column(Integer, nullable=False)
    purchase_date = Column(Date, nullable=False)
    invoice_reference = Column(String(50), nullable=False, default='')
    quantity_liters = Column(Numeric(18, 3), nullable=False)
    quantity_tons = Column(Numeric(18, 3), nullable=False)
    total_value = Column(Numeric(18, 2), nullable=False)  # supplier currency
    total_value_usd = Column(Numeric(18, 2), nullable=False)
    remaining_quantity = Column(Numeric(18, 3), nullable=False)
    created_date = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        Index('idx_purchase_lots_vessel_fifo', 'vessel_id', 'purchase_date', 'id'),
    )
