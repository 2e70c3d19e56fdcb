from datetime import datetime

from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, Index
from TableModels.base import Base


class ConsumptionRow(Base):
    """Fuel consumed by a vessel; month is the YYYY-MM of consumption_date."""
    __tablename__ = 'consumptions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    vessel_id = Column(Integer, nullable=False)
    consumption_date = Column(Date, nullable=False)
    month = Column(String(7), nullable=False)
    consumption_liters = Column(Numeric(18, 2), nullable=False)
    legs_completed = Column(Integer, nullable=False, default=0)
    created_date = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        Index('idx_consumptions_vessel_date', 'vessel_id', 'consumption_date', 'id'),
        Index('idx_consumptions_month', 'month'),
    )
