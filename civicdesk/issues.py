# Issue lifecycle and query logic over the `issues` collection
#
# Every function here is synchronous and takes a pymongo Database; the HTTP
# layer runs them on the shared executor. This module is the only writer of
# issue records.

import json
import logging
import math
import re
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, Field
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from . import config
from .database import new_id, utcnow
from .models import (
    AdminIssueStats, DashboardResponse, IssueAck, IssueAdmin, IssueCategory,
    IssuePriority, IssuePublic, IssueStatus, IssueSubmission, IssueSummary,
    IssueUpdate, Location, Pagination, ReporterInfo, SortOrder,
)

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = ("createdAt", "updatedAt", "title", "category", "priority", "status")
DEFAULT_SORT_FIELD = "createdAt"


class IssueValidationError(Exception):
    """Carries every field-level failure found in one submission or update."""

    def __init__(self, errors: List[Dict[str, str]]):
        super().__init__("; ".join(f"{e['field']}: {e['message']}" for e in errors))
        self.errors = errors


class IssueNotFoundError(Exception):
    pass

# ---------------------------------------------------------------------------
# Intake validation
# ---------------------------------------------------------------------------
def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_object(value: Any, field: str, errors: List[Dict[str, str]]) -> Optional[dict]:
    """Nested objects arrive as JSON text from multipart forms."""
    if value is None or value == "":
        return {}
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            errors.append({"field": field, "message": "Must be a JSON object"})
            return None
    if not isinstance(value, dict):
        errors.append({"field": field, "message": "Must be a JSON object"})
        return None
    return value


def _coordinates(value: Any, errors: List[Dict[str, str]]) -> Optional[dict]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            value = None
    if isinstance(value, dict):
        try:
            lat, lng = value.get("lat"), value.get("lng")
            if isinstance(lat, bool) or isinstance(lng, bool):
                raise TypeError
            lat, lng = float(lat), float(lng)
        except (TypeError, ValueError):
            lat = lng = None
        if lat is not None:
            # NaN fails both comparisons, infinities fail the range
            if -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0:
                return {"lat": lat, "lng": lng}
            errors.append({"field": "location.coordinates",
                           "message": "Coordinates must be finite, lat within ±90 and lng within ±180"})
            return None
    errors.append({"field": "location.coordinates", "message": "Coordinates need numeric lat and lng"})
    return None


def _member(enum_cls: Type[Enum], value: Any) -> Optional[Enum]:
    try:
        return enum_cls(value)
    except ValueError:
        return None


def validate_submission(raw: Dict[str, Any], image_count: int = 0) -> IssueSubmission:
    """Check a raw public submission and return the normalized result.

    Rules are independent: every violated field is reported in a single
    IssueValidationError rather than stopping at the first one. Any
    caller-supplied ``status`` is ignored.
    """
    errors: List[Dict[str, str]] = []

    title = _text(raw.get("title"))
    if not title:
        errors.append({"field": "title", "message": "Title is required"})
    description = _text(raw.get("description"))
    if not description:
        errors.append({"field": "description", "message": "Description is required"})

    category = _member(IssueCategory, raw.get("category"))
    if category is None:
        errors.append({"field": "category", "message": "Invalid category"})

    priority = IssuePriority.MEDIUM
    if raw.get("priority") not in (None, ""):
        priority = _member(IssuePriority, raw.get("priority"))
        if priority is None:
            errors.append({"field": "priority", "message": "Invalid priority"})

    location = _as_object(raw.get("location"), "location", errors)
    address, coordinates = "", None
    if location is not None:
        address = _text(location.get("address"))
        if not address:
            errors.append({"field": "location.address", "message": "Address is required"})
        coordinates = _coordinates(location.get("coordinates"), errors)

    reporter = _as_object(raw.get("reporterInfo"), "reporterInfo", errors)
    name = email = phone = ""
    if reporter is not None:
        name = _text(reporter.get("name"))
        if not name:
            errors.append({"field": "reporterInfo.name", "message": "Reporter name is required"})
        email = _text(reporter.get("email"))
        if not email:
            errors.append({"field": "reporterInfo.email", "message": "Valid email is required"})
        phone = _text(reporter.get("phone"))

    if image_count > config.MAX_IMAGES:
        errors.append({"field": "images", "message": f"At most {config.MAX_IMAGES} images are allowed"})

    if errors:
        raise IssueValidationError(errors)

    return IssueSubmission(
        title=title, description=description, category=category, priority=priority,
        location=Location(address=address, coordinates=coordinates),
        reporterInfo=ReporterInfo(name=name, email=email, phone=phone))

# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------
def new_issue_document(submission: IssueSubmission, images: Sequence[Dict[str, str]] = (),
                       now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    return {
        "_id": new_id(),
        "title": submission.title,
        "description": submission.description,
        "category": submission.category.value,
        "priority": submission.priority.value,
        "status": IssueStatus.SUBMITTED.value,
        "location": submission.location.model_dump(),
        "images": [{"url": i["url"], "filename": i["filename"]} for i in images],
        "reporterInfo": submission.reporterInfo.model_dump(),
        "assignedTo": None,
        "adminNotes": "",
        "createdAt": now,
        "updatedAt": now,
    }


def create_issue(db, submission: IssueSubmission, images: Sequence[Dict[str, str]] = (),
                 now: Optional[datetime] = None) -> IssueAck:
    if len(images) > config.MAX_IMAGES:
        raise IssueValidationError(
            [{"field": "images", "message": f"At most {config.MAX_IMAGES} images are allowed"}])
    doc = new_issue_document(submission, images, now)
    db.issues.insert_one(doc)
    logger.info("Issue %s reported (%s, %d image(s))", doc["_id"], doc["category"], len(doc["images"]))
    return IssueAck(id=doc["_id"], title=doc["title"], status=doc["status"], createdAt=doc["createdAt"])

# ---------------------------------------------------------------------------
# Query & pagination
# ---------------------------------------------------------------------------
class IssueFilter(BaseModel):
    """Recognized listing filters. Each set field is an exact match; unset fields match all."""
    category: Optional[IssueCategory] = None
    status: Optional[IssueStatus] = None
    priority: Optional[IssuePriority] = None
    assignedTo: Optional[str] = None

    @classmethod
    def from_params(cls, category: Optional[str] = None, status: Optional[str] = None,
                    priority: Optional[str] = None, assignedTo: Optional[str] = None) -> "IssueFilter":
        """Build a filter from raw query parameters; blank values impose no constraint."""
        errors: List[Dict[str, str]] = []
        values: Dict[str, Any] = {}
        for field, enum_cls, raw in (("category", IssueCategory, category),
                                     ("status", IssueStatus, status),
                                     ("priority", IssuePriority, priority)):
            if raw is None or not raw.strip():
                continue
            member = _member(enum_cls, raw.strip())
            if member is None:
                errors.append({"field": field, "message": f"Invalid {field}"})
            values[field] = member
        if assignedTo is not None and assignedTo.strip():
            values["assignedTo"] = assignedTo.strip()
        if errors:
            raise IssueValidationError(errors)
        return cls(**values)

    def to_query(self) -> Dict[str, Any]:
        query = {}
        for field, value in self:
            if value is None or value == "":
                continue
            query[field] = value.value if isinstance(value, Enum) else value
        return query


class IssueQuery(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE)
    sortBy: str = DEFAULT_SORT_FIELD
    sortOrder: SortOrder = SortOrder.DESC

    def sort_keys(self) -> List[Tuple[str, int]]:
        field = self.sortBy if self.sortBy in SORTABLE_FIELDS else DEFAULT_SORT_FIELD
        direction = DESCENDING if self.sortOrder == SortOrder.DESC else ASCENDING
        # _id keeps pages stable when sort values tie
        return [(field, direction), ("_id", direction)]

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit)


def list_issues(db, filters: Optional[IssueFilter] = None, query: Optional[IssueQuery] = None,
                admin: bool = False) -> Tuple[List[IssuePublic], Pagination]:
    filters = filters or IssueFilter()
    query = query or IssueQuery()
    fq = filters.to_query()
    total = db.issues.count_documents(fq)
    cursor = db.issues.find(fq).sort(query.sort_keys()).skip(query.skip).limit(query.limit)
    model = IssueAdmin if admin else IssuePublic
    issues = [model(**doc, id=doc["_id"]) for doc in cursor]
    return issues, Pagination(current=query.page, pages=page_count(total, query.limit), total=total)


def search_issues(db, text: str, limit: int = config.DEFAULT_SEARCH_LIMIT) -> List[IssuePublic]:
    pattern = re.escape(text.strip())
    if not pattern:
        return []
    regex = {"$regex": pattern, "$options": "i"}
    fq = {"$or": [{"title": regex}, {"description": regex}, {"location.address": regex}]}
    cursor = db.issues.find(fq).sort([("createdAt", DESCENDING), ("_id", DESCENDING)]).limit(limit)
    return [IssuePublic(**doc, id=doc["_id"]) for doc in cursor]


def get_issue(db, issue_id: str, admin: bool = False) -> IssuePublic:
    doc = db.issues.find_one({"_id": issue_id})
    if not doc:
        raise IssueNotFoundError(issue_id)
    model = IssueAdmin if admin else IssuePublic
    return model(**doc, id=doc["_id"])

# ---------------------------------------------------------------------------
# Staff mutation
# ---------------------------------------------------------------------------
def update_issue(db, issue_id: str, update: IssueUpdate, now: Optional[datetime] = None) -> IssueAdmin:
    """Apply the fields present in ``update`` and refresh ``updatedAt``.

    No transition graph is enforced: any status may follow any other.
    """
    set_fields: Dict[str, Any] = {}
    for field, value in update.model_dump(exclude_unset=True).items():
        if field in ("status", "priority"):
            set_fields[field] = value.value if isinstance(value, Enum) else value
        elif field == "assignedTo":
            set_fields[field] = value
        elif field == "adminNotes":
            set_fields[field] = value or ""
    set_fields["updatedAt"] = now or utcnow()
    doc = db.issues.find_one_and_update(
        {"_id": issue_id}, {"$set": set_fields}, return_document=ReturnDocument.AFTER)
    if not doc:
        raise IssueNotFoundError(issue_id)
    logger.info("Issue %s updated: %s", issue_id, sorted(k for k in set_fields if k != "updatedAt"))
    return IssueAdmin(**doc, id=doc["_id"])


def delete_issue(db, issue_id: str) -> dict:
    doc = db.issues.find_one_and_delete({"_id": issue_id})
    if not doc:
        raise IssueNotFoundError(issue_id)
    logger.info("Issue %s deleted", issue_id)
    return doc

# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------
def group_counts(db, field: str, enum_cls: Type[Enum], match: Optional[dict] = None) -> Dict[str, int]:
    """Count issues per value of ``field``. Every enum member is present, zero when unmatched."""
    pipeline = []
    if match:
        pipeline.append({"$match": match})
    pipeline.append({"$group": {"_id": f"${field}", "count": {"$sum": 1}}})
    counts = {member.value: 0 for member in enum_cls}
    for row in db.issues.aggregate(pipeline):
        if row["_id"] is not None:
            counts[row["_id"]] = row["count"]
    return counts


def admin_stats(db) -> AdminIssueStats:
    return AdminIssueStats(
        byStatus=group_counts(db, "status", IssueStatus),
        byCategory=group_counts(db, "category", IssueCategory))


def dashboard_stats(db, period: int = config.DASHBOARD_DEFAULT_PERIOD_DAYS,
                    now: Optional[datetime] = None) -> DashboardResponse:
    start_date = (now or utcnow()) - timedelta(days=period)
    latest = db.issues.find(
        {}, {"title": 1, "status": 1, "category": 1, "createdAt": 1, "priority": 1},
    ).sort([("createdAt", DESCENDING), ("_id", DESCENDING)]).limit(config.DASHBOARD_LATEST_COUNT)
    return DashboardResponse(
        period=period,
        totalIssues=db.issues.count_documents({}),
        recentIssues=db.issues.count_documents({"createdAt": {"$gte": start_date}}),
        statusStats=group_counts(db, "status", IssueStatus),
        categoryStats=group_counts(db, "category", IssueCategory),
        priorityStats=group_counts(db, "priority", IssuePriority),
        latestIssues=[IssueSummary(**d, id=d["_id"]) for d in latest])
