# Seed data: civic issues
#
# Coverage matrix:
#   Categories : all 6 represented
#   Statuses   : Submitted, In Progress, Resolved, Closed
#   Priorities : Low, Medium, High, Critical
#   Special    : coordinates, assignment, admin notes, reporter phone

from datetime import timedelta

from ..database import utcnow
from ..issues import create_issue, update_issue
from ..models import IssueSubmission, IssueUpdate, Location, ReporterInfo

ISSUES = [
    {"title": "Overflowing garbage bin near market",
     "description": "The community bin at the vegetable market has not been emptied for four days and is spilling onto the road.",
     "category": "Garbage", "priority": "High", "status": "In Progress",
     "address": "Gandhi Market, Ward 12", "coordinates": {"lat": 20.2961, "lng": 85.8245},
     "reporter": {"name": "Meera Nair", "email": "meera.nair@email.com", "phone": "9876500011"},
     "assignedTo": "Sanitation Department", "adminNotes": "Collection truck rerouted.",
     "days_ago": 2},

    {"title": "Streetlight out on Lake Road",
     "description": "Three consecutive streetlights are not working, the stretch is completely dark after 7pm.",
     "category": "Streetlight", "priority": "Medium", "status": "Submitted",
     "address": "Lake Road, near bus stop 4",
     "reporter": {"name": "Arjun Das", "email": "arjun.das@email.com"},
     "days_ago": 1},

    {"title": "Burst water main flooding the street",
     "description": "A pipe burst under the footpath and clean water has been gushing since morning.",
     "category": "Water", "priority": "Critical", "status": "Resolved",
     "address": "14th Cross, Sector 3", "coordinates": {"lat": 20.3012, "lng": 85.8190},
     "reporter": {"name": "Fatima Sheikh", "email": "fatima.sheikh@email.com", "phone": "9876500022"},
     "assignedTo": "Water Works", "adminNotes": "Valve replaced, supply restored.",
     "days_ago": 12},

    {"title": "Large pothole at junction",
     "description": "Deep pothole in the middle of the junction, two-wheelers are swerving to avoid it.",
     "category": "Road", "priority": "High", "status": "Submitted",
     "address": "Main St and Station Rd junction",
     "reporter": {"name": "Ravi Kumar", "email": "ravi.kumar@email.com"},
     "days_ago": 0},

    {"title": "Blocked storm drain",
     "description": "The drain outside the school is clogged with plastic and water pools after every rain.",
     "category": "Drainage", "priority": "Medium", "status": "In Progress",
     "address": "Government High School, Ward 7",
     "reporter": {"name": "Lakshmi Iyer", "email": "lakshmi.iyer@email.com"},
     "assignedTo": "Public Works", "days_ago": 6},

    {"title": "Stray cattle on highway service road",
     "description": "Cattle rest on the service road every evening, causing near misses.",
     "category": "Other", "priority": "Low", "status": "Closed",
     "address": "NH-16 service road, km 42",
     "reporter": {"name": "Joseph Mathew", "email": "joseph.mathew@email.com"},
     "adminNotes": "Forwarded to veterinary department; outside municipal scope.",
     "days_ago": 45},

    {"title": "Garbage burning in vacant plot",
     "description": "Someone burns waste in the empty plot every night, the smoke enters nearby homes.",
     "category": "Garbage", "priority": "Medium", "status": "Submitted",
     "address": "Plot 22, Green Park Colony",
     "reporter": {"name": "Anita Rao", "email": "anita.rao@email.com"},
     "days_ago": 3},

    {"title": "Flickering streetlight by the park",
     "description": "The light at the park gate flickers constantly.",
     "category": "Streetlight", "priority": "Low", "status": "Resolved",
     "address": "City Park east gate",
     "reporter": {"name": "Vikram Singh", "email": "vikram.singh@email.com"},
     "assignedTo": "Electrical Division", "days_ago": 20},
]


def import_issues(db) -> list:
    """Insert the seed issues and apply their triage state. Returns the inserted ids."""
    print("\n  Importing seed issues...")
    now = utcnow()
    ids = []
    for i, item in enumerate(ISSUES):
        created = now - timedelta(days=item["days_ago"], hours=i)
        submission = IssueSubmission(
            title=item["title"], description=item["description"],
            category=item["category"], priority=item["priority"],
            location=Location(address=item["address"], coordinates=item.get("coordinates")),
            reporterInfo=ReporterInfo(**item["reporter"]))
        ack = create_issue(db, submission, now=created)

        triage = {"status": item["status"]}
        if item.get("assignedTo"):
            triage["assignedTo"] = item["assignedTo"]
        if item.get("adminNotes"):
            triage["adminNotes"] = item["adminNotes"]
        if item["status"] != "Submitted" or len(triage) > 1:
            update_issue(db, ack.id, IssueUpdate(**triage), now=created + timedelta(hours=6))
        ids.append(ack.id)
        print(f"    [{i+1:2d}/{len(ISSUES)}] {item['status']:11s}  {item['title'][:52]}")

    print(f"  => {len(ISSUES)} issues imported")
    return ids
