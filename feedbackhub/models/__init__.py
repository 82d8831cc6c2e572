from .account import Account
from .profile import Profile, ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF, ROLE_USER, ROLE_CHOICES
from .branch import Branch, FeedbackFormSettings
from .feedback import FeedbackCategory, Feedback, FeedbackResponse
from .qr_code import QRCode
from .team import Team, TeamMember, TeamInvitation, Task
from .subscriber import Subscriber, TIER_TRIAL, TIER_BASIC, TIER_PRO
from .billing_event import BillingEventLog
from .analytics_event import AnalyticsEvent, UsageCounter
from .email_log import EmailLog

__all__ = [
    "Account",
    "Profile",
    "ROLE_ADMIN",
    "ROLE_MANAGER",
    "ROLE_STAFF",
    "ROLE_USER",
    "ROLE_CHOICES",
    "Branch",
    "FeedbackFormSettings",
    "FeedbackCategory",
    "Feedback",
    "FeedbackResponse",
    "QRCode",
    "Team",
    "TeamMember",
    "TeamInvitation",
    "Task",
    "Subscriber",
    "TIER_TRIAL",
    "TIER_BASIC",
    "TIER_PRO",
    "BillingEventLog",
    "AnalyticsEvent",
    "UsageCounter",
    "EmailLog",
]
