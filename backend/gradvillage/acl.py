"""Role names, status vocabularies and audit action constants.

Every principal carries exactly one role in its token.  Keeping the role
names, the admin hierarchy and the audit action names in one place makes
it easy to review who may do what across the routers.
"""

ROLE_STUDENT = "student"
ROLE_DONOR = "donor"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"

ALL_ROLES = [ROLE_STUDENT, ROLE_DONOR, ROLE_ADMIN, ROLE_SUPER_ADMIN]

# Roles implicitly granted by holding a more privileged role.
ROLE_IMPLIES = {
    ROLE_SUPER_ADMIN: [ROLE_ADMIN],
}

# Principal kinds encoded in the token subject ("<kind>:<id>").
KIND_STUDENT = "student"
KIND_DONOR = "donor"
KIND_ADMIN = "admin"
ADMIN_KINDS = {KIND_ADMIN}
ADMIN_ROLES = (ROLE_ADMIN, ROLE_SUPER_ADMIN)

DONATION_PENDING = "pending"
DONATION_COMPLETED = "completed"
DONATION_FAILED = "failed"
DONATION_REFUNDED = "refunded"
DONATION_STATUSES = [
    DONATION_PENDING,
    DONATION_COMPLETED,
    DONATION_FAILED,
    DONATION_REFUNDED,
]

DONATION_REGISTRATION_FEE = "registration_fee"
DONATION_TYPES = ["general", "item", "emergency", DONATION_REGISTRATION_FEE]

REGISTRATION_PENDING = "pending"
REGISTRATION_COMPLETED = "completed"
PAYMENT_METHODS = ["stripe", "paypal", "zelle"]

FUNDED_NEEDED = "needed"
FUNDED_PARTIAL = "partial"
FUNDED_FUNDED = "funded"

FREQUENCIES = ["weekly", "monthly", "quarterly", "yearly"]
PRIORITIES = ["high", "medium", "low"]

VERIFICATION_PENDING = "pending"
VERIFICATION_APPROVED = "approved"
VERIFICATION_REJECTED = "rejected"
VERIFICATION_METHODS = ["email", "id_card", "transcript", "document"]

USER_STATUSES = ["active", "inactive", "suspended"]

ACTION_REFUND_DONATION = "REFUND_DONATION"
ACTION_VERIFY_ZELLE = "VERIFY_ZELLE_PAYMENT"
ACTION_REJECT_ZELLE = "REJECT_ZELLE_PAYMENT"
ACTION_APPROVE_VERIFICATION = "APPROVE_VERIFICATION"
ACTION_REJECT_VERIFICATION = "REJECT_VERIFICATION"
ACTION_DELETE_VERIFICATION = "DELETE_VERIFICATION"
ACTION_UPDATE_USER_STATUS = "UPDATE_USER_STATUS"
ACTION_RECONCILE = "RECONCILE_COUNTERS"


def expand_roles(role: str) -> set[str]:
    """Return ``role`` plus every role it implies."""

    roles = {role}
    for implied in ROLE_IMPLIES.get(role, []):
        roles |= expand_roles(implied)
    return roles


def role_satisfies(role: str, allowed: tuple[str, ...] | list[str]) -> bool:
    return bool(expand_roles(role) & set(allowed))
