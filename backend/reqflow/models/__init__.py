from .auth import User
from .requisitions import Requisition, RequisitionItem, StatusHistoryEntry
from .shipments import ShipmentBatch, BatchLineItem
from .communications import Notification

__all__ = [
    'User',
    'Requisition', 'RequisitionItem', 'StatusHistoryEntry',
    'ShipmentBatch', 'BatchLineItem',
    'Notification',
]
