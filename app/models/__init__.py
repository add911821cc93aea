"""Database models — re-exports every model.

Import from here:  from app.models import QuoteRequest, Supplier, ...
Or from submodules: from app.models.quotes import QuoteRequest
"""

from .base import Base  # noqa: F401

# Tenants & Users
from .auth import Organization, User  # noqa: F401

# Suppliers
from .suppliers import AuxiliaryEmail, Supplier  # noqa: F401

# Fleet: Vehicles, Parts, Maintenance
from .fleet import MaintenancePart, MaintenanceRecord, Part, Vehicle  # noqa: F401

# Quote Requests
from .quotes import QuoteRequest, QuoteRequestEmailThread, QuoteRequestItem  # noqa: F401

# Email
from .emails import EmailAttachment, EmailMessage, EmailThread  # noqa: F401

# Orders
from .orders import Order, OrderItem  # noqa: F401

# Audit & Assistant
from .activity import ActivityLog, ChatMessage, Conversation  # noqa: F401
