# Civic Issue Desk
# FastAPI + MongoDB service for citizen issue reports and staff triage

__version__ = "0.1.0"
