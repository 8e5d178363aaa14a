# Models module for the event ticketing API
from app.models.common import ApiResponse, ErrorResponse, Page, ok
from app.models.user import (
    User, UserWithRoles, UserBrief, UserCreate, UserUpdate, ProfileUpdate,
    RoleAssignment, PermissionAssignment, UserStatus
)
from app.models.auth import FirebaseLoginRequest, FirebaseIdentity, AuthResult
from app.models.event import (
    Event, EventCreate, EventUpdate, EventSummary, EventMember,
    PanitiaRequest, TransferOwnershipRequest, EventTimeFilter
)
from app.models.ticket_type import TicketType, TicketTypeCreate, TicketTypeUpdate, TicketTypeAvailability
from app.models.ticket import (
    Ticket, TicketDetail, TicketStatus, Attendance, ScanRequest,
    TicketValidation, TicketStatistics
)
from app.models.transaction import (
    Transaction, TransactionDetail, TransactionCreate, TransactionStatus,
    FreeRegistrationRequest, PurchaseResult, FreeRegistrationResult, TransactionStatistics
)
from app.models.scan import (
    ScanRecord, ScanRecordDetail, ScanCreate, CheckInResult, ScanCheck, ScanStatistics
)
from app.models.role import Role, RoleCreate, RoleUpdate, Permission, PermissionCreate
from app.models.payment import MidtransNotification, WebhookOutcome
