# Complaint, Media, Analysis and Caller data shapes

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Status(str, Enum):
    REGISTERED = "REGISTERED"
    ANALYZING = "ANALYZING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    WITHDRAWN = "WITHDRAWN"
    PENDING = "PENDING"

class ComplaintArea(str, Enum):
    TRAIN = "TRAIN"
    STATION = "STATION"
    SUGGESTIONS = "SUGGESTIONS"
    ENQUIRY = "ENQUIRY"
    RAIL_ANUBHAV = "RAIL_ANUBHAV"

class ComplaintSource(str, Enum):
    FORM = "FORM"
    CHATBOT = "CHATBOT"

class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

class MediaType(str, Enum):
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"
    AUDIO = "AUDIO"

class Role(str, Enum):
    PASSENGER = "PASSENGER"
    OFFICIAL = "OFFICIAL"
    SUPER_ADMIN = "SUPER_ADMIN"
    MODERATOR = "MODERATOR"

ADMIN_ROLES = frozenset({Role.OFFICIAL, Role.SUPER_ADMIN, Role.MODERATOR})

# Statuses a passenger may normally take a complaint back from
WITHDRAWABLE_STATUSES = frozenset({Status.REGISTERED, Status.ANALYZING})

# Alternate spellings seen in chat and function-call input
_AREA_ALIASES = {
    "SUGGESTION": ComplaintArea.SUGGESTIONS.value,
    "EXPERIENCE": ComplaintArea.RAIL_ANUBHAV.value,
}

# Keys an update may never touch once a record exists
IMMUTABLE_FIELDS = frozenset({"id", "ownerEmail", "createdAt", "media", "source"})

# Only the enrichment pipeline attaches analysis
UPDATE_PROTECTED_FIELDS = IMMUTABLE_FIELDS | {"analysis"}


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def touch(created_at: datetime, updated_at: Optional[datetime] = None) -> datetime:
    """A fresh updated_at that never moves backwards."""
    return max(now_utc(), created_at, updated_at or created_at)


def normalize_area(value: Any) -> Optional[str]:
    if value is None:
        return None
    area = str(value).strip().upper()
    if not area:
        return None
    return _AREA_ALIASES.get(area, area)


def to_wire_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """Rewrite snake_case keys to the camelCase keys used in the blob."""
    out: Dict[str, Any] = {}
    for key, value in data.items():
        out[to_camel(key) if "_" in key else key] = value
    return out

# ---------------------------------------------------------------------------
# Pydantic Models
# ---------------------------------------------------------------------------
class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

class Media(WireModel):
    id: str
    name: str
    type: MediaType = MediaType.AUDIO
    url: str

class AnalysisResult(WireModel):
    id: str
    complaint_id: str
    category: str
    urgency_score: float = Field(..., ge=0, le=10)
    summary: str
    keywords: List[str] = Field(default_factory=list)
    suggested_department: Optional[str] = None
    analysis_timestamp: datetime

class AnalysisOutcome(WireModel):
    """What the analysis service hands back for one complaint."""
    category: str = "Other"
    urgency_score: float = Field(3, ge=0, le=10)
    summary: str = "Analysis could not generate a summary."
    keywords: List[str] = Field(default_factory=list)
    suggested_department: Optional[str] = None

    @field_validator("keywords")
    @classmethod
    def dedupe_keywords(cls, v):
        seen = set()
        unique = []
        for word in v:
            if word not in seen:
                seen.add(word)
                unique.append(word)
        return unique

class ComplaintBase(WireModel):
    id: str
    title: str
    description: str
    status: Status = Status.REGISTERED
    complaint_type: str
    complaint_sub_type: str
    owner_email: str
    source: ComplaintSource = ComplaintSource.FORM
    priority: Priority = Priority.MEDIUM
    created_at: datetime
    updated_at: datetime
    media: List[Media] = Field(default_factory=list)
    analysis: Optional[AnalysisResult] = None
    # Routing metadata
    assigned_to: Optional[str] = None
    department: Optional[str] = None
    zone: Optional[str] = None
    # Shared optional details
    incident_date: Optional[str] = None
    incident_time: Optional[str] = None
    location: Optional[str] = None
    mobile_number: Optional[str] = None
    declaration: Optional[bool] = None
    consent_share: Optional[bool] = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def assume_utc(cls, v):
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def updated_not_before_created(self):
        if self.updated_at < self.created_at:
            self.updated_at = self.created_at
        return self

class TrainComplaint(ComplaintBase):
    complaint_area: Literal["TRAIN"] = "TRAIN"
    pnr: Optional[str] = None
    uts_number: Optional[str] = None
    train_number: Optional[str] = None
    train_name: Optional[str] = None
    coach_number: Optional[str] = None
    seat_number: Optional[str] = None
    journey_date: Optional[str] = None
    nearest_station: Optional[str] = None
    unauthorized_people_count: Optional[int] = Field(None, ge=0)

class StationComplaint(ComplaintBase):
    complaint_area: Literal["STATION"] = "STATION"
    station_code: Optional[str] = None
    station_name: Optional[str] = None
    platform_number: Optional[str] = None
    nearest_station: Optional[str] = None
    unauthorized_people_count: Optional[int] = Field(None, ge=0)

class SuggestionComplaint(ComplaintBase):
    complaint_area: Literal["SUGGESTIONS"] = "SUGGESTIONS"
    train_number: Optional[str] = None
    station_code: Optional[str] = None

class EnquiryComplaint(ComplaintBase):
    complaint_area: Literal["ENQUIRY"] = "ENQUIRY"
    pnr: Optional[str] = None
    train_number: Optional[str] = None
    station_code: Optional[str] = None

class ExperienceComplaint(ComplaintBase):
    complaint_area: Literal["RAIL_ANUBHAV"] = "RAIL_ANUBHAV"
    train_number: Optional[str] = None
    station_code: Optional[str] = None
    journey_date: Optional[str] = None
    rating: Optional[int] = Field(None, ge=1, le=5)

Complaint = Annotated[
    Union[TrainComplaint, StationComplaint, SuggestionComplaint, EnquiryComplaint, ExperienceComplaint],
    Field(discriminator="complaint_area"),
]
ComplaintAdapter = TypeAdapter(Complaint)


def parse_complaint(data: Dict[str, Any]) -> ComplaintBase:
    """Validate one raw record (either key spelling) into its area variant."""
    wire = to_wire_keys(data)
    if "complaintArea" in wire:
        wire["complaintArea"] = normalize_area(wire["complaintArea"])
    return ComplaintAdapter.validate_python(wire)

# ---------------------------------------------------------------------------
# Input shapes
# ---------------------------------------------------------------------------
class MediaUpload(BaseModel):
    """A file handed to create/resubmit before it is encoded for storage.

    ``data`` is raw bytes, or a base64 string as received over JSON.
    """
    name: str
    content_type: str = ""
    data: Union[str, bytes]

class Caller(BaseModel):
    email: Optional[str] = None
    role: Optional[Role] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.email) and self.role is not None

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role in ADMIN_ROLES

GUEST = Caller()
