from .base import Base, metadata
from .purchase_lot import PurchaseLotRow
from .consumption_record import ConsumptionRow
from .allocation import AllocationRow
