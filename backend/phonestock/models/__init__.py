from .auth import User
from .catalog import Product
from .inventory import PurchaseInvoice, PhoneUnit
from .assignments import DsrAssignment, DsrAssignmentUnit
from .schedules import DsrSchedule, DsrShift

__all__ = [
    'User',
    'Product',
    'PurchaseInvoice', 'PhoneUnit',
    'DsrAssignment', 'DsrAssignmentUnit',
    'DsrSchedule', 'DsrShift',
]
