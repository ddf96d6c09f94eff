"""
Unit tests for the issue lifecycle and query logic (civicdesk.issues),
run directly against an in-memory MongoDB.
"""

import math
from datetime import timedelta

import pytest

from civicdesk.database import utcnow
from civicdesk.issues import (
    IssueFilter, IssueNotFoundError, IssueQuery, IssueValidationError, create_issue,
    dashboard_stats, delete_issue, get_issue, group_counts, list_issues, search_issues,
    update_issue, validate_submission,
)
from civicdesk.models import (
    IssueAdmin, IssueCategory, IssuePriority, IssuePublic, IssueStatus, IssueUpdate,
)


def payload(**overrides):
    data = {
        "title": "Pothole",
        "description": "Large pothole",
        "category": "Road",
        "location": {"address": "Main St"},
        "reporterInfo": {"name": "A", "email": "a@x.com"},
    }
    data.update(overrides)
    return data


def error_fields(exc_info):
    return sorted(e["field"] for e in exc_info.value.errors)


# ═══════════════════════════════════════════════════════════════════════════════
# INTAKE VALIDATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestValidateSubmission:
    def test_valid_submission_defaults(self):
        sub = validate_submission(payload())
        assert sub.priority == IssuePriority.MEDIUM
        assert sub.category == IssueCategory.ROAD
        assert sub.reporterInfo.phone == ""
        assert sub.location.coordinates is None

    def test_all_required_fields_reported_together(self):
        with pytest.raises(IssueValidationError) as exc_info:
            validate_submission({})
        assert error_fields(exc_info) == sorted([
            "title", "description", "category", "location.address",
            "reporterInfo.name", "reporterInfo.email",
        ])

    def test_blank_after_trim_is_missing(self):
        with pytest.raises(IssueValidationError) as exc_info:
            validate_submission(payload(title="   ", reporterInfo={"name": " ", "email": "a@x.com"}))
        assert error_fields(exc_info) == ["reporterInfo.name", "title"]

    def test_only_violated_fields_reported(self):
        with pytest.raises(IssueValidationError) as exc_info:
            validate_submission(payload(category="Potholes"))
        assert error_fields(exc_info) == ["category"]

    def test_text_is_trimmed(self):
        sub = validate_submission(payload(title="  Pothole  ", location={"address": " Main St "}))
        assert sub.title == "Pothole"
        assert sub.location.address == "Main St"

    def test_nested_objects_as_json_text(self):
        sub = validate_submission(payload(
            location='{"address": "Main St", "coordinates": {"lat": 12.5, "lng": "77.1"}}',
            reporterInfo='{"name": "A", "email": "a@x.com", "phone": "555"}'))
        assert sub.location.coordinates.lat == 12.5
        assert sub.location.coordinates.lng == 77.1
        assert sub.reporterInfo.phone == "555"

    def test_malformed_json_reported_on_object_field(self):
        with pytest.raises(IssueValidationError) as exc_info:
            validate_submission(payload(location="{not json"))
        assert error_fields(exc_info) == ["location"]

    def test_bad_coordinates(self):
        with pytest.raises(IssueValidationError) as exc_info:
            validate_submission(payload(location={"address": "Main St", "coordinates": {"lat": "north"}}))
        assert error_fields(exc_info) == ["location.coordinates"]

    @pytest.mark.parametrize("location", [
        '{"address": "Main St", "coordinates": {"lat": NaN, "lng": 85.8}}',
        '{"address": "Main St", "coordinates": {"lat": 20.3, "lng": Infinity}}',
        {"address": "Main St", "coordinates": {"lat": float("nan"), "lng": float("-inf")}},
        {"address": "Main St", "coordinates": {"lat": "inf", "lng": 0}},
        {"address": "Main St", "coordinates": {"lat": 91, "lng": 0}},
        {"address": "Main St", "coordinates": {"lat": 0, "lng": -180.5}},
    ])
    def test_non_finite_or_out_of_range_coordinates(self, location):
        with pytest.raises(IssueValidationError) as exc_info:
            validate_submission(payload(location=location))
        assert error_fields(exc_info) == ["location.coordinates"]

    def test_boundary_coordinates_accepted(self):
        submission = validate_submission(
            payload(location={"address": "Pole", "coordinates": {"lat": -90, "lng": 180}}))
        assert submission.location.coordinates.lat == -90.0
        assert submission.location.coordinates.lng == 180.0

    def test_invalid_priority(self):
        with pytest.raises(IssueValidationError) as exc_info:
            validate_submission(payload(priority="Urgent"))
        assert error_fields(exc_info) == ["priority"]

    def test_blank_priority_defaults_to_medium(self):
        assert validate_submission(payload(priority="")).priority == IssuePriority.MEDIUM

    def test_too_many_images(self):
        with pytest.raises(IssueValidationError) as exc_info:
            validate_submission(payload(), image_count=6)
        assert error_fields(exc_info) == ["images"]


# ═══════════════════════════════════════════════════════════════════════════════
# CREATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestCreateIssue:
    def test_status_forced_to_submitted(self, db):
        sub = validate_submission(payload(status="Resolved"))
        ack = create_issue(db, sub)
        assert ack.status == IssueStatus.SUBMITTED
        doc = db.issues.find_one({"_id": ack.id})
        assert doc["status"] == "Submitted"
        assert doc["priority"] == "Medium"
        assert doc["assignedTo"] is None
        assert doc["adminNotes"] == ""
        assert doc["createdAt"] == doc["updatedAt"]

    def test_images_kept_in_order(self, db):
        images = [{"url": f"/uploads/img{i}.png", "filename": f"img{i}.png"} for i in range(3)]
        ack = create_issue(db, validate_submission(payload()), images=images)
        issue = get_issue(db, ack.id)
        assert [i.filename for i in issue.images] == ["img0.png", "img1.png", "img2.png"]

    def test_more_than_five_images_rejected(self, db):
        images = [{"url": f"/uploads/{i}.png", "filename": f"{i}.png"} for i in range(6)]
        with pytest.raises(IssueValidationError):
            create_issue(db, validate_submission(payload()), images=images)
        assert db.issues.count_documents({}) == 0

    def test_ids_are_unique(self, db):
        sub = validate_submission(payload())
        ids = {create_issue(db, sub).id for _ in range(5)}
        assert len(ids) == 5


# ═══════════════════════════════════════════════════════════════════════════════
# FILTERS, SORTING & PAGINATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestIssueFilter:
    def test_unset_fields_match_all(self):
        assert IssueFilter().to_query() == {}

    def test_from_params_ignores_blank(self):
        f = IssueFilter.from_params(category="", status="In Progress", priority=None, assignedTo=" ")
        assert f.to_query() == {"status": "In Progress"}

    def test_from_params_rejects_unknown_members(self):
        with pytest.raises(IssueValidationError) as exc_info:
            IssueFilter.from_params(category="Potholes", priority="Urgent")
        assert error_fields(exc_info) == ["category", "priority"]

    def test_assigned_to_is_exact_match(self):
        f = IssueFilter.from_params(assignedTo="Public Works")
        assert f.to_query() == {"assignedTo": "Public Works"}


class TestListIssues:
    def test_category_filter(self, db, seed_issue):
        road = seed_issue(category="Road")
        seed_issue(category="Water")
        issues, pagination = list_issues(db, IssueFilter(category=IssueCategory.ROAD))
        assert [i.id for i in issues] == [road]
        assert pagination.total == 1

    @pytest.mark.parametrize("count,limit", [(0, 5), (7, 3), (9, 3), (10, 50), (11, 2)])
    def test_page_count(self, db, seed_issue, count, limit):
        for _ in range(count):
            seed_issue()
        issues, pagination = list_issues(db, query=IssueQuery(limit=limit))
        assert pagination.total == count
        assert pagination.pages == math.ceil(count / limit)
        assert len(issues) <= limit

    def test_pages_partition_results(self, db, seed_issue):
        ids = [seed_issue() for _ in range(7)]
        seen = []
        for page in (1, 2, 3):
            issues, pagination = list_issues(db, query=IssueQuery(page=page, limit=3))
            assert pagination.current == page
            seen.extend(i.id for i in issues)
        assert seen == list(reversed(ids))

    def test_page_past_end_is_empty(self, db, seed_issue):
        seed_issue()
        issues, pagination = list_issues(db, query=IssueQuery(page=4, limit=10))
        assert issues == []
        assert pagination.total == 1

    def test_default_order_newest_first(self, db, seed_issue):
        first = seed_issue(title="First")
        second = seed_issue(title="Second")
        issues, _ = list_issues(db)
        assert [i.id for i in issues] == [second, first]

    def test_sort_by_title_ascending(self, db, seed_issue):
        seed_issue(title="Bravo")
        seed_issue(title="Alpha")
        seed_issue(title="Charlie")
        issues, _ = list_issues(db, query=IssueQuery(sortBy="title", sortOrder="asc"))
        assert [i.title for i in issues] == ["Alpha", "Bravo", "Charlie"]

    def test_unknown_sort_key_uses_creation_order(self, db, seed_issue):
        first = seed_issue()
        second = seed_issue()
        issues, _ = list_issues(db, query=IssueQuery(sortBy="reporterInfo.phone", sortOrder="asc"))
        assert [i.id for i in issues] == [first, second]

    def test_public_projection_hides_private_fields(self, db, seed_issue):
        issue_id = seed_issue()
        update_issue(db, issue_id, IssueUpdate(adminNotes="internal"))
        issues, _ = list_issues(db)
        dumped = issues[0].model_dump()
        assert isinstance(issues[0], IssuePublic)
        assert "adminNotes" not in dumped
        assert "phone" not in dumped["reporterInfo"]

    def test_admin_projection_is_full(self, db, seed_issue):
        seed_issue()
        issues, _ = list_issues(db, admin=True)
        assert isinstance(issues[0], IssueAdmin)
        assert issues[0].reporterInfo.phone == "555-0100"


class TestSearchIssues:
    def test_matches_title_description_address_case_insensitive(self, db, seed_issue):
        a = seed_issue(title="Broken STREETLIGHT")
        b = seed_issue(description="the streetlight flickers")
        c = seed_issue(location={"address": "Streetlight Lane"})
        seed_issue(title="Garbage pile")
        results = search_issues(db, "streetlight")
        assert [r.id for r in results] == [c, b, a]

    def test_pattern_characters_are_literal(self, db, seed_issue):
        seed_issue(title="Pothole (large)")
        seed_issue(title="Pothole large")
        results = search_issues(db, "(large)")
        assert [r.title for r in results] == ["Pothole (large)"]

    def test_limit(self, db, seed_issue):
        for _ in range(5):
            seed_issue()
        assert len(search_issues(db, "pothole", limit=2)) == 2

    def test_always_public_projection(self, db, seed_issue):
        seed_issue()
        result = search_issues(db, "pothole")[0]
        assert "adminNotes" not in result.model_dump()


# ═══════════════════════════════════════════════════════════════════════════════
# STAFF MUTATION
# ═══════════════════════════════════════════════════════════════════════════════

class TestUpdateIssue:
    def test_only_present_fields_applied(self, db, seed_issue):
        issue_id = seed_issue(priority="High")
        update_issue(db, issue_id, IssueUpdate(assignedTo="Roads Dept"))
        issue = get_issue(db, issue_id, admin=True)
        assert issue.assignedTo == "Roads Dept"
        assert issue.priority == IssuePriority.HIGH
        assert issue.status == IssueStatus.SUBMITTED

    def test_any_status_may_follow_any_other(self, db, seed_issue):
        issue_id = seed_issue()
        for status in ("Closed", "Submitted", "Resolved", "In Progress"):
            assert update_issue(db, issue_id, IssueUpdate(status=status)).status.value == status

    def test_explicit_null_clears_assignment_and_notes(self, db, seed_issue):
        issue_id = seed_issue()
        update_issue(db, issue_id, IssueUpdate(assignedTo="Water Works", adminNotes="call back"))
        issue = update_issue(db, issue_id, IssueUpdate.model_validate({"assignedTo": None, "adminNotes": None}))
        assert issue.assignedTo is None
        assert issue.adminNotes == ""

    def test_refreshes_updated_at(self, db, seed_issue):
        issue_id = seed_issue(created=utcnow() - timedelta(days=3))
        issue = update_issue(db, issue_id, IssueUpdate(priority="Critical"))
        assert issue.updatedAt > issue.createdAt

    def test_same_update_twice_is_idempotent(self, db, seed_issue):
        issue_id = seed_issue()
        change = IssueUpdate(status="Resolved", priority="Low", assignedTo="Crew 4", adminNotes="done")
        first = update_issue(db, issue_id, change).model_dump(exclude={"updatedAt"})
        second = update_issue(db, issue_id, change).model_dump(exclude={"updatedAt"})
        assert first == second

    def test_unknown_id_raises_and_creates_nothing(self, db):
        with pytest.raises(IssueNotFoundError):
            update_issue(db, "does-not-exist", IssueUpdate(status="Closed"))
        assert db.issues.count_documents({}) == 0

    def test_null_status_is_rejected(self):
        with pytest.raises(ValueError):
            IssueUpdate.model_validate({"status": None})

    def test_delete_is_permanent(self, db, seed_issue):
        issue_id = seed_issue()
        delete_issue(db, issue_id)
        with pytest.raises(IssueNotFoundError):
            get_issue(db, issue_id)
        with pytest.raises(IssueNotFoundError):
            delete_issue(db, issue_id)


# ═══════════════════════════════════════════════════════════════════════════════
# STATISTICS
# ═══════════════════════════════════════════════════════════════════════════════

class TestStatistics:
    def test_group_counts_zero_filled(self, db, seed_issue):
        seed_issue(category="Road")
        seed_issue(category="Road")
        seed_issue(category="Water")
        counts = group_counts(db, "category", IssueCategory)
        assert counts == {"Garbage": 0, "Streetlight": 0, "Water": 1, "Road": 2,
                          "Drainage": 0, "Other": 0}

    def test_empty_dashboard(self, db):
        stats = dashboard_stats(db)
        assert stats.totalIssues == 0
        assert stats.recentIssues == 0
        assert set(stats.statusStats.values()) == {0}
        assert set(stats.categoryStats.values()) == {0}
        assert set(stats.priorityStats.values()) == {0}
        assert stats.latestIssues == []

    def test_recent_window(self, db, seed_issue):
        now = utcnow()
        seed_issue(created=now - timedelta(days=40))
        seed_issue(created=now - timedelta(days=10))
        seed_issue(created=now - timedelta(days=1))
        assert dashboard_stats(db, period=30, now=now).recentIssues == 2
        assert dashboard_stats(db, period=7, now=now).recentIssues == 1
        assert dashboard_stats(db, period=30, now=now).totalIssues == 3

    def test_status_and_priority_breakdown(self, db, seed_issue):
        a = seed_issue(priority="Critical")
        seed_issue()
        update_issue(db, a, IssueUpdate(status="Resolved"))
        stats = dashboard_stats(db)
        assert stats.statusStats["Resolved"] == 1
        assert stats.statusStats["Submitted"] == 1
        assert stats.priorityStats["Critical"] == 1
        assert stats.priorityStats["Medium"] == 1

    def test_latest_issues_capped_and_newest_first(self, db, seed_issue):
        ids = [seed_issue(title=f"Issue {n}") for n in range(12)]
        latest = dashboard_stats(db).latestIssues
        assert len(latest) == 10
        assert [i.id for i in latest] == list(reversed(ids))[:10]
        assert set(latest[0].model_dump()) == {"id", "title", "status", "category", "priority", "createdAt"}
