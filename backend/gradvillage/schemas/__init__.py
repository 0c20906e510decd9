"""Convenience imports for all schema classes used by the API."""

from .common import (
    CamelModel,
    Envelope,
    ErrorResponse,
    FieldError,
    Message,
    Pagination,
)
from .student import (
    StudentCreate,
    StudentUpdate,
    StudentSummary,
    StudentCard,
    StudentRead,
    Facets,
    StudentSearchResult,
    Suggestions,
)
from .registry import (
    RegistryCreate,
    RegistryUpdate,
    RegistryRead,
    AvailableItem,
    AvailableItemsResult,
    SponsoredContribution,
    SponsoredItem,
)
from .donation import (
    DonationCreate,
    ProcessPayment,
    SponsorRequest,
    RefundRequest,
    ZelleVerification,
    DonationRead,
    DonationHistoryItem,
    HistorySummary,
    DonationHistory,
    AdminDonationList,
    ReceiptRead,
)
from .recurring import (
    RecurringDonationCreate,
    RecurringDonationRead,
    RecurringDonationUpdate,
)
from .donor import (
    DonorCreate,
    DonorUpdate,
    DonorRead,
    BookmarkCreate,
    BookmarkUpdate,
    BookmarkRead,
    BookmarkStatus,
    PublicDonation,
    StudentDetail,
    StudentDetailStats,
    DonorDashboard,
)
from .auth import (
    LoginRequest,
    AdminLoginRequest,
    AdminCreate,
    AdminRead,
    AuthResult,
    NeedsAdmin,
    Me,
)
from .verification import (
    SchoolRead,
    VerificationSubmit,
    VerificationRead,
    VerificationStatus,
    VerificationList,
    VerificationStats,
    RejectRequest,
)
from .admin import (
    UserStatusUpdate,
    UserListEntry,
    UserList,
    PlatformStats,
    ReconcileReport,
)
from .settings import SettingsRead, SettingsUpdate
from .profile import (
    PublicProfileStats,
    PublicProfile,
    UrlAvailability,
    ProfileOverview,
    ProfileDonationStats,
    ProfileRegistryStats,
    MonthlyPoint,
    ProfileTrends,
    StudentProfileStats,
)
