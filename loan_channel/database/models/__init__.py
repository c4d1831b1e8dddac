from loan_channel.database.models.user_model import (
    User,
    Admin,
    Asm,
    Rm,
    Partner,
    Customer,
    Role,
    UserStatus,
)
from loan_channel.database.models.target_model import Target
from loan_channel.database.models.loan_application_model import LoanApplication
from loan_channel.database.models.payout_model import Payout
from loan_channel.database.models.counter_model import Counter
from loan_channel.database.models.notification_model import Notification

DOCUMENT_MODELS = [
    User,
    Admin,
    Asm,
    Rm,
    Partner,
    Customer,
    Target,
    LoanApplication,
    Payout,
    Counter,
    Notification,
]

__all__ = [
    "User",
    "Admin",
    "Asm",
    "Rm",
    "Partner",
    "Customer",
    "Role",
    "UserStatus",
    "Target",
    "LoanApplication",
    "Payout",
    "Counter",
    "Notification",
    "DOCUMENT_MODELS",
]
