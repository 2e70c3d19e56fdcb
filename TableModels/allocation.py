from datetime import datetime

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Index
from TableModels.base import Base


class AllocationRow(Base):
    """
    One FIFO allocation of a consumption record to a purchase lot.

    Lot and consumption ids are plain indexed columns, not foreign keys:
    rows left behind by upstream deletions are found and removed by the
    reconciliation audit.
    """
    __tablename__ = 'allocations'

    id = Column(Integer, primary_key=True, autoincrement=True)
    purchase_lot_id = Column(Integer, nullable=False)
    consumption_id = Column(Integer, nullable=False)
    month = Column(String(7), nullable=False)
    allocated_quantity = Column(Numeric(18, 3), nullable=False)
    # Stored at 6 places; sums can differ from the 2-place run totals in the last digit
    allocated_value = Column(Numeric(18, 6), nullable=False)  # supplier currency
    allocated_value_usd = Column(Numeric(18, 6), nullable=False)
    lot_balance_after = Column(Numeric(18, 3), nullable=False)
    created_date = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        Index('idx_allocations_lot', 'purchase_lot_id'),
        Index('idx_allocations_consumption', 'consumption_id'),
        Index('idx_allocations_month', 'month'),
    )
