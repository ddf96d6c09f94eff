# Seed data: default administrator

from ..admins import AdminExistsError, create_admin
from ..models import AdminRole

DEFAULT_ADMIN = {
    "name": "System Administrator",
    "email": "admin@civic.gov",
    "password": "admin123",
    "role": AdminRole.SUPER_ADMIN,
    "department": "Municipal Corporation",
}


def import_admins(db) -> int:
    """Create the default administrator unless it already exists. Returns the number created."""
    print("\n  Importing default administrator...")
    try:
        create_admin(db, DEFAULT_ADMIN["name"], DEFAULT_ADMIN["email"], DEFAULT_ADMIN["password"],
                     role=DEFAULT_ADMIN["role"], department=DEFAULT_ADMIN["department"])
    except AdminExistsError:
        print(f"    SKIP  {DEFAULT_ADMIN['email']} (already exists)")
        return 0
    print(f"    OK    {DEFAULT_ADMIN['email']} ({DEFAULT_ADMIN['role'].value})")
    return 1
