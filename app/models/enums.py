"""Persisted enumerations. Stored as plain strings in String columns."""

from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    TECHNICIAN = "TECHNICIAN"
    USER = "USER"


class QuoteStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    RECEIVED = "RECEIVED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CONVERTED_TO_ORDER = "CONVERTED_TO_ORDER"


IMMUTABLE_QUOTE_STATUSES = {QuoteStatus.CONVERTED_TO_ORDER, QuoteStatus.REJECTED}
DELETABLE_QUOTE_STATUSES = {QuoteStatus.DRAFT, QuoteStatus.REJECTED, QuoteStatus.EXPIRED}


class ItemAvailability(str, Enum):
    IN_STOCK = "IN_STOCK"
    BACKORDERED = "BACKORDERED"
    SPECIAL_ORDER = "SPECIAL_ORDER"
    UNKNOWN = "UNKNOWN"


class FulfillmentMethod(str, Enum):
    PICKUP = "PICKUP"
    DELIVERY = "DELIVERY"
    SPLIT = "SPLIT"


class QuoteThreadStatus(str, Enum):
    SENT = "SENT"
    RESPONDED = "RESPONDED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    NO_RESPONSE = "NO_RESPONSE"


class EmailThreadStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    WAITING_RESPONSE = "WAITING_RESPONSE"
    RESPONSE_RECEIVED = "RESPONSE_RECEIVED"
    FOLLOW_UP_NEEDED = "FOLLOW_UP_NEEDED"
    COMPLETED = "COMPLETED"
    CONVERTED_TO_ORDER = "CONVERTED_TO_ORDER"
    CANCELLED = "CANCELLED"


class EmailDirection(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class SupplierType(str, Enum):
    OEM_DIRECT = "OEM_DIRECT"
    DISTRIBUTOR = "DISTRIBUTOR"
    AFTERMARKET = "AFTERMARKET"
    LOCAL_DEALER = "LOCAL_DEALER"
    ONLINE_RETAILER = "ONLINE_RETAILER"


class SupplierStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    SUSPENDED = "SUSPENDED"


class VehicleType(str, Enum):
    EXCAVATOR = "EXCAVATOR"
    BULLDOZER = "BULLDOZER"
    LOADER = "LOADER"
    BACKHOE = "BACKHOE"
    CRANE = "CRANE"
    DUMP_TRUCK = "DUMP_TRUCK"
    GRADER = "GRADER"
    COMPACTOR = "COMPACTOR"
    TRACTOR = "TRACTOR"
    COMBINE = "COMBINE"
    SKID_STEER = "SKID_STEER"
    TELEHANDLER = "TELEHANDLER"
    OTHER = "OTHER"


class IndustryCategory(str, Enum):
    CONSTRUCTION = "CONSTRUCTION"
    AGRICULTURE = "AGRICULTURE"
    FORESTRY = "FORESTRY"


class VehicleStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    MAINTENANCE = "MAINTENANCE"
    RETIRED = "RETIRED"


class MaintenanceType(str, Enum):
    PREVENTIVE = "PREVENTIVE"
    REPAIR = "REPAIR"
    INSPECTION = "INSPECTION"
    EMERGENCY = "EMERGENCY"
    RECALL = "RECALL"
    UPGRADE = "UPGRADE"


class MaintenanceStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    OVERDUE = "OVERDUE"
    ON_HOLD = "ON_HOLD"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class OrderStatus(str, Enum):
    PENDING_QUOTE = "PENDING_QUOTE"
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    RETURNED = "RETURNED"


# Forward-only progression used by tracking sync; CANCELLED is always accepted
ORDER_STATUS_PROGRESSION = [
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
]


class ActivityType(str, Enum):
    SUPPLIER_ADDED = "SUPPLIER_ADDED"
    SUPPLIER_UPDATED = "SUPPLIER_UPDATED"
    SUPPLIER_DELETED = "SUPPLIER_DELETED"
    VEHICLE_ADDED = "VEHICLE_ADDED"
    VEHICLE_UPDATED = "VEHICLE_UPDATED"
    VEHICLE_DELETED = "VEHICLE_DELETED"
    MAINTENANCE_SCHEDULED = "MAINTENANCE_SCHEDULED"
    MAINTENANCE_UPDATED = "MAINTENANCE_UPDATED"
    MAINTENANCE_COMPLETED = "MAINTENANCE_COMPLETED"
    MAINTENANCE_DELETED = "MAINTENANCE_DELETED"
    QUOTE_REQUESTED = "QUOTE_REQUESTED"
    QUOTE_UPDATED = "QUOTE_UPDATED"
    PRICES_UPDATED = "PRICES_UPDATED"
    ORDER_CREATED = "ORDER_CREATED"
    EMAIL_ASSIGNED = "EMAIL_ASSIGNED"
    EMAIL_MERGED = "EMAIL_MERGED"
    SYSTEM_UPDATE = "SYSTEM_UPDATE"
