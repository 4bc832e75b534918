"""
Reference data for the role and permission catalogs.

Role categories, action triggers and the default role/permission set that
``rbac.seed`` writes into an empty database.

    ADMIN (platform)
    ├── Manager         - Full operator access, may delete catalog entries
    ├── Admin           - Day-to-day operator access
    └── Moderator, Auditor, Editor, Advertiser, Analyst

    USER
    ├── Voter                                       - Baseline role, every user holds it
    ├── Voter (Free)
    ├── Individual/Organization Election Creator    - Free and Subscribed tiers
    ├── Content Creator (Subscribed)
    └── Sponsor
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .models import RoleType


class RoleCategory(str, Enum):
    PLATFORM = "platform"
    ELECTION_CREATOR = "election_creator"
    VOTER = "voter"
    SPONSOR = "sponsor"


class ActionTrigger(str, Enum):
    """User actions that can grant a role automatically."""
    CREATE_ELECTION = "create_election"
    CREATE_ORGANIZATION_ELECTION = "create_organization_election"
    CONTENT_INTEGRATION = "content_integration"
    DEPOSIT_FUNDS = "deposit_funds"


class PermissionCategory(str, Enum):
    ADMIN = "admin"
    ELECTION = "election"
    VOTING = "voting"
    FINANCIAL = "financial"
    CONTENT = "content"
    ANALYTICS = "analytics"
    SECURITY = "security"


class ResourceType(str, Enum):
    USER = "user"
    ELECTION = "election"
    VOTE = "vote"
    PAYMENT = "payment"
    LOTTERY = "lottery"
    CONTENT = "content"
    SYSTEM = "system"
    AUDIT = "audit"
    SECURITY = "security"
    ANALYTICS = "analytics"
    ADVERTISEMENT = "advertisement"
    ROLE = "role"


class ActionType(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    EXECUTE = "execute"


BASELINE_ROLE = "Voter"

ADMIN_ROLES: List[str] = [
    "Manager",
    "Admin",
    "Moderator",
    "Auditor",
    "Editor",
    "Advertiser",
    "Analyst",
]

USER_ROLES: List[str] = [
    "Voter (Free)",
    "Individual Election Creator (Free)",
    "Individual Election Creator (Subscribed)",
    "Organization Election Creator (Free)",
    "Organization Election Creator (Subscribed)",
    "Content Creator (Subscribed)",
    "Sponsor",
]


@dataclass(frozen=True)
class RoleInfo:
    """Seed definition of one role."""
    name: str
    role_type: RoleType
    category: RoleCategory
    description: str
    is_default: bool = False
    requires_subscription: bool = False
    action_trigger: Optional[ActionTrigger] = None

    @property
    def requires_action_trigger(self) -> bool:
        return self.action_trigger is not None


@dataclass(frozen=True)
class PermissionInfo:
    """Seed definition of one permission."""
    name: str
    category: PermissionCategory
    resource: ResourceType
    action: ActionType
    description: str


def _admin(name: str, description: str) -> RoleInfo:
    return RoleInfo(name, RoleType.ADMIN, RoleCategory.PLATFORM, description)


DEFAULT_ROLES: List[RoleInfo] = [
    RoleInfo(
        BASELINE_ROLE, RoleType.USER, RoleCategory.VOTER,
        "Baseline role held by every user", is_default=True,
    ),
    _admin("Manager", "Full operator access including catalog deletion"),
    _admin("Admin", "Operator access to assignments and catalogs"),
    _admin("Moderator", "Reviews elections and content"),
    _admin("Auditor", "Read access to audit and security data"),
    _admin("Editor", "Manages published content"),
    _admin("Advertiser", "Manages advertisements"),
    _admin("Analyst", "Read access to analytics"),
    RoleInfo(
        "Voter (Free)", RoleType.USER, RoleCategory.VOTER,
        "Free voting tier",
    ),
    RoleInfo(
        "Individual Election Creator (Free)", RoleType.USER, RoleCategory.ELECTION_CREATOR,
        "Creates personal elections",
        action_trigger=ActionTrigger.CREATE_ELECTION,
    ),
    RoleInfo(
        "Individual Election Creator (Subscribed)", RoleType.USER, RoleCategory.ELECTION_CREATOR,
        "Creates personal elections with paid features",
        requires_subscription=True,
    ),
    RoleInfo(
        "Organization Election Creator (Free)", RoleType.USER, RoleCategory.ELECTION_CREATOR,
        "Creates elections on behalf of an organization",
        action_trigger=ActionTrigger.CREATE_ORGANIZATION_ELECTION,
    ),
    RoleInfo(
        "Organization Election Creator (Subscribed)", RoleType.USER, RoleCategory.ELECTION_CREATOR,
        "Creates organization elections with paid features",
        requires_subscription=True,
    ),
    RoleInfo(
        "Content Creator (Subscribed)", RoleType.USER, RoleCategory.ELECTION_CREATOR,
        "Integrates elections into external content",
        requires_subscription=True,
        action_trigger=ActionTrigger.CONTENT_INTEGRATION,
    ),
    RoleInfo(
        "Sponsor", RoleType.USER, RoleCategory.SPONSOR,
        "Funds election prize pools",
        action_trigger=ActionTrigger.DEPOSIT_FUNDS,
    ),
]


DEFAULT_PERMISSIONS: List[PermissionInfo] = [
    PermissionInfo("election.create", PermissionCategory.ELECTION, ResourceType.ELECTION,
                   ActionType.CREATE, "Create an election"),
    PermissionInfo("election.read", PermissionCategory.ELECTION, ResourceType.ELECTION,
                   ActionType.READ, "View elections"),
    PermissionInfo("election.update", PermissionCategory.ELECTION, ResourceType.ELECTION,
                   ActionType.UPDATE, "Edit an election"),
    PermissionInfo("election.delete", PermissionCategory.ELECTION, ResourceType.ELECTION,
                   ActionType.DELETE, "Delete an election"),
    PermissionInfo("vote.cast", PermissionCategory.VOTING, ResourceType.VOTE,
                   ActionType.CREATE, "Cast a vote"),
    PermissionInfo("payment.deposit", PermissionCategory.FINANCIAL, ResourceType.PAYMENT,
                   ActionType.CREATE, "Deposit funds into a prize pool"),
    PermissionInfo("content.publish", PermissionCategory.CONTENT, ResourceType.CONTENT,
                   ActionType.CREATE, "Publish content"),
    PermissionInfo("analytics.read", PermissionCategory.ANALYTICS, ResourceType.ANALYTICS,
                   ActionType.READ, "View analytics dashboards"),
    PermissionInfo("audit.read", PermissionCategory.SECURITY, ResourceType.AUDIT,
                   ActionType.READ, "View audit records"),
    PermissionInfo("role.manage", PermissionCategory.ADMIN, ResourceType.ROLE,
                   ActionType.UPDATE, "Manage roles and assignments"),
    PermissionInfo("user.manage", PermissionCategory.ADMIN, ResourceType.USER,
                   ActionType.UPDATE, "Manage user accounts"),
]


_CREATOR_PERMISSIONS = ("election.create", "election.read", "election.update", "vote.cast")

DEFAULT_BINDINGS: Dict[str, Tuple[str, ...]] = {
    BASELINE_ROLE: ("election.read", "vote.cast"),
    "Voter (Free)": ("election.read", "vote.cast"),
    "Individual Election Creator (Free)": _CREATOR_PERMISSIONS,
    "Individual Election Creator (Subscribed)": _CREATOR_PERMISSIONS + ("analytics.read",),
    "Organization Election Creator (Free)": _CREATOR_PERMISSIONS,
    "Organization Election Creator (Subscribed)": _CREATOR_PERMISSIONS + ("analytics.read",),
    "Content Creator (Subscribed)": _CREATOR_PERMISSIONS + ("content.publish",),
    "Sponsor": ("election.read", "payment.deposit"),
    "Manager": tuple(p.name for p in DEFAULT_PERMISSIONS),
    "Admin": (
        "election.create", "election.read", "election.update", "election.delete",
        "role.manage", "user.manage", "analytics.read",
    ),
    "Moderator": ("election.read", "election.update", "content.publish"),
    "Auditor": ("audit.read", "analytics.read"),
    "Editor": ("content.publish", "election.read"),
    "Advertiser": ("content.publish",),
    "Analyst": ("analytics.read",),
}
