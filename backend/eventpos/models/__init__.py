from .tenancy import Tenant, Event, Zone, VenueTable, ZoneRoleAssignment
from .catalog import MenuItem
from .orders import Order, OrderItem
from .returns import OrderReturn
from .payments import Payment, SplitSession, SplitPaymentItem
from .inventory import InventoryZoneAllocation, InventoryZoneTransfer
from .events import DomainEventRecord

__all__ = [
    'Tenant', 'Event', 'Zone', 'VenueTable', 'ZoneRoleAssignment',
    'MenuItem',
    'Order', 'OrderItem',
    'OrderReturn',
    'Payment', 'SplitSession', 'SplitPaymentItem',
    'InventoryZoneAllocation', 'InventoryZoneTransfer',
    'DomainEventRecord',
]
