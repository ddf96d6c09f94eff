# Enumerations and pydantic models for issues and administrators

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class IssueCategory(str, Enum):
    GARBAGE = "Garbage"
    STREETLIGHT = "Streetlight"
    WATER = "Water"
    ROAD = "Road"
    DRAINAGE = "Drainage"
    OTHER = "Other"

class IssuePriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

class IssueStatus(str, Enum):
    SUBMITTED = "Submitted"
    IN_PROGRESS = "In Progress"
    RESOLVED = "Resolved"
    CLOSED = "Closed"

class AdminRole(str, Enum):
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"

# ---------------------------------------------------------------------------
# Issue building blocks
# ---------------------------------------------------------------------------
class Coordinates(BaseModel):
    lat: float
    lng: float

class Location(BaseModel):
    address: str
    coordinates: Optional[Coordinates] = None

class ImageRef(BaseModel):
    url: str
    filename: str

class ReporterInfo(BaseModel):
    name: str
    email: str
    phone: str = ""

class PublicReporterInfo(BaseModel):
    name: str
    email: str

# ---------------------------------------------------------------------------
# Issue projections
# ---------------------------------------------------------------------------
class IssueSubmission(BaseModel):
    """A submission that passed intake validation, ready to persist."""
    title: str
    description: str
    category: IssueCategory = IssueCategory.OTHER
    priority: IssuePriority = IssuePriority.MEDIUM
    location: Location
    reporterInfo: ReporterInfo

class IssuePublic(BaseModel):
    id: str
    title: str
    description: str
    category: IssueCategory
    priority: IssuePriority
    status: IssueStatus
    location: Location
    images: List[ImageRef] = Field(default_factory=list)
    reporterInfo: PublicReporterInfo
    assignedTo: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime

class IssueAdmin(IssuePublic):
    reporterInfo: ReporterInfo
    adminNotes: str = ""

class IssueAck(BaseModel):
    id: str
    title: str
    status: IssueStatus
    createdAt: datetime

class IssueSummary(BaseModel):
    id: str
    title: str
    status: IssueStatus
    category: IssueCategory
    priority: IssuePriority
    createdAt: datetime

class IssueUpdate(BaseModel):
    """Staff mutation. Only fields present in the request body are applied."""
    status: Optional[IssueStatus] = None
    priority: Optional[IssuePriority] = None
    assignedTo: Optional[str] = Field(None, max_length=200)
    adminNotes: Optional[str] = Field(None, max_length=10000)

    @field_validator("status", "priority", mode="before")
    @classmethod
    def reject_null_enum(cls, v):
        if v is None:
            raise ValueError("Value cannot be null")
        return v

# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------
class Pagination(BaseModel):
    current: int
    pages: int
    total: int

class IssueCreateResponse(BaseModel):
    message: str
    issue: IssueAck

class IssueListResponse(BaseModel):
    issues: List[IssuePublic]
    pagination: Pagination

class AdminIssueStats(BaseModel):
    byStatus: Dict[str, int]
    byCategory: Dict[str, int]

class AdminIssueListResponse(BaseModel):
    issues: List[IssueAdmin]
    pagination: Pagination
    stats: AdminIssueStats

class IssueUpdateResponse(BaseModel):
    message: str
    issue: IssueAdmin

class DashboardResponse(BaseModel):
    period: int
    totalIssues: int
    recentIssues: int
    statusStats: Dict[str, int]
    categoryStats: Dict[str, int]
    priorityStats: Dict[str, int]
    latestIssues: List[IssueSummary]

class MessageResponse(BaseModel):
    message: str

# ---------------------------------------------------------------------------
# Administrators
# ---------------------------------------------------------------------------
def _normalize_email(v: str) -> str:
    v = v.strip().lower()
    if "@" not in v or v.startswith("@") or v.endswith("@"):
        raise ValueError("A valid email is required")
    return v

class AdminCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=6, max_length=72)
    department: Optional[str] = Field(None, max_length=200)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        if len(v.encode("utf-8")) > 72:
            raise ValueError("Password cannot exceed 72 bytes")
        return v

class AdminLogin(BaseModel):
    email: str = Field(..., max_length=320)
    password: str = Field(..., min_length=6, max_length=72)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return _normalize_email(v)

class AdminResponse(BaseModel):
    id: str
    name: str
    email: str
    role: AdminRole
    department: Optional[str] = None
    createdAt: datetime

class TokenResponse(BaseModel):
    token: str
    admin: AdminResponse
