# Civic Issue Desk HTTP API
# FastAPI + MongoDB

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.errors import PyMongoError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from . import config
from .admins import (
    AdminExistsError, admin_to_response, authenticate, count_admins, create_admin,
)
from .database import executor, get_db, shutdown_db, startup_db
from .issues import (
    IssueFilter, IssueNotFoundError, IssueQuery, IssueValidationError, admin_stats,
    create_issue, dashboard_stats, delete_issue, get_issue, list_issues, search_issues,
    update_issue, validate_submission,
)
from .media import MediaRejectedError, discard_uploads, real_uploads, store_uploads, upload_dir
from .models import (
    AdminCreate, AdminIssueListResponse, AdminLogin, AdminResponse, DashboardResponse,
    IssueAdmin, IssueCreateResponse, IssueListResponse, IssuePublic, IssueUpdate,
    IssueUpdateResponse, MessageResponse, SortOrder, TokenResponse,
)
from .security import create_access_token, get_current_admin, get_optional_admin

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup_db()
    upload_dir()
    logger.info("Uploads stored in %s", config.UPLOAD_DIR)
    yield
    await shutdown_db()

# ---------------------------------------------------------------------------
# App & Globals
# ---------------------------------------------------------------------------
app = FastAPI(title="Civic Issue Desk", lifespan=lifespan)
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# ---------------------------------------------------------------------------
# Security Headers Middleware
# ---------------------------------------------------------------------------
API_CSP = "default-src 'none'; img-src 'self'; frame-ancestors 'none'"
# Swagger UI and ReDoc load their bundles and inline bootstrap from the jsDelivr CDN
DOCS_CSP = ("default-src 'self'; script-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
            "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net https://fonts.googleapis.com; "
            "font-src 'self' https://fonts.gstatic.com; img-src 'self' data: https://fastapi.tiangolo.com "
            "https://cdn.redoc.ly; worker-src 'self' blob:; frame-ancestors 'none'")
DOCS_PATHS = ("/docs", "/docs/oauth2-redirect", "/redoc")

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = (
            DOCS_CSP if request.url.path in DOCS_PATHS else API_CSP)
        return response

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials="*" not in config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.mount(config.UPLOAD_URL_PREFIX,
          StaticFiles(directory=str(config.UPLOAD_DIR), check_dir=False), name="uploads")

# ---------------------------------------------------------------------------
# Error Mapping
# ---------------------------------------------------------------------------
def _validation_response(errors: list) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": errors})

@app.exception_handler(IssueValidationError)
async def issue_validation_handler(request: Request, exc: IssueValidationError):
    return _validation_response(exc.errors)

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header", "form")]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "Invalid value")})
    return _validation_response(errors)

@app.exception_handler(MediaRejectedError)
async def media_rejected_handler(request: Request, exc: MediaRejectedError):
    return _validation_response([{"field": "images", "message": exc.message}])

@app.exception_handler(IssueNotFoundError)
async def issue_not_found_handler(request: Request, exc: IssueNotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Issue not found"})

@app.exception_handler(AdminExistsError)
async def admin_exists_handler(request: Request, exc: AdminExistsError):
    return JSONResponse(status_code=400, content={"detail": "Admin already exists"})

@app.exception_handler(PyMongoError)
@app.exception_handler(OSError)
async def store_error_handler(request: Request, exc: Exception):
    logger.exception("Storage error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

# ---------------------------------------------------------------------------
# Query dependencies
# ---------------------------------------------------------------------------
def public_filter(category: Optional[str] = None, status: Optional[str] = None,
                  priority: Optional[str] = None) -> IssueFilter:
    return IssueFilter.from_params(category=category, status=status, priority=priority)

def admin_filter(category: Optional[str] = None, status: Optional[str] = None,
                 priority: Optional[str] = None, assignedTo: Optional[str] = None) -> IssueFilter:
    return IssueFilter.from_params(category=category, status=status, priority=priority,
                                   assignedTo=assignedTo)

def page_query(page: int = Query(1, ge=1),
               limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
               sortBy: str = Query("createdAt", max_length=50),
               sortOrder: SortOrder = Query(SortOrder.DESC)) -> IssueQuery:
    return IssueQuery(page=page, limit=limit, sortBy=sortBy, sortOrder=sortOrder)

# ---------------------------------------------------------------------------
# PUBLIC ISSUE ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/issues", response_model=IssueCreateResponse, status_code=201)
@limiter.limit("10/minute")
async def report_issue(request: Request,
                       title: Optional[str] = Form(None),
                       description: Optional[str] = Form(None),
                       category: Optional[str] = Form(None),
                       priority: Optional[str] = Form(None),
                       location: Optional[str] = Form(None),
                       reporterInfo: Optional[str] = Form(None),
                       images: Optional[List[UploadFile]] = File(None),
                       db=Depends(get_db)):
    uploads = real_uploads(images)
    submission = validate_submission(
        {"title": title, "description": description, "category": category,
         "priority": priority, "location": location, "reporterInfo": reporterInfo},
        image_count=len(uploads))
    stored = await store_uploads(uploads)
    loop = asyncio.get_event_loop()
    try:
        ack = await loop.run_in_executor(executor, create_issue, db, submission, stored)
    except Exception:
        discard_uploads(stored)
        raise
    return IssueCreateResponse(message="Issue reported successfully", issue=ack)

@app.get("/issues", response_model=IssueListResponse)
async def get_issues(filters: IssueFilter = Depends(public_filter),
                     query: IssueQuery = Depends(page_query), db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    issues, pagination = await loop.run_in_executor(executor, list_issues, db, filters, query)
    return IssueListResponse(issues=issues, pagination=pagination)

@app.get("/issues/search/{query:path}", response_model=List[IssuePublic])
async def search(query: str, limit: int = Query(config.DEFAULT_SEARCH_LIMIT, ge=1, le=config.MAX_PAGE_SIZE),
                 db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, search_issues, db, query, limit)

@app.get("/issues/{issue_id}", response_model=IssuePublic)
async def get_public_issue(issue_id: str, db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, get_issue, db, issue_id)

# ---------------------------------------------------------------------------
# AUTH ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/auth/login", response_model=TokenResponse)
@limiter.limit("5/minute")
async def login(request: Request, form: AdminLogin, db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    admin = await loop.run_in_executor(executor, authenticate, db, form.email, form.password)
    if admin is None:
        logger.info("Failed login for %s", form.email)
        raise HTTPException(status_code=400, detail="Invalid credentials")
    return TokenResponse(token=create_access_token(admin), admin=admin_to_response(admin))

@app.post("/auth/register", response_model=TokenResponse, status_code=201)
@limiter.limit("3/minute")
async def register(request: Request, data: AdminCreate,
                   current=Depends(get_optional_admin), db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    # Without a staff token, only the very first administrator may register
    if current is None and not config.ALLOW_OPEN_REGISTRATION:
        existing = await loop.run_in_executor(executor, count_admins, db)
        if existing > 0:
            raise HTTPException(status_code=401, detail="Administrator token required")
    admin = await loop.run_in_executor(
        executor, lambda: create_admin(db, data.name, data.email, data.password,
                                       department=data.department))
    if current is not None:
        logger.info("Admin %s registered administrator %s", current["email"], admin["email"])
    return TokenResponse(token=create_access_token(admin), admin=admin_to_response(admin))

@app.get("/auth/me", response_model=AdminResponse)
async def get_me(admin=Depends(get_current_admin)):
    return admin_to_response(admin)

# ---------------------------------------------------------------------------
# ADMIN ISSUE ENDPOINTS
# ---------------------------------------------------------------------------
@app.get("/admin/issues", response_model=AdminIssueListResponse)
async def admin_list_issues(filters: IssueFilter = Depends(admin_filter),
                            query: IssueQuery = Depends(page_query),
                            admin=Depends(get_current_admin), db=Depends(get_db)):
    def fetch():
        issues, pagination = list_issues(db, filters, query, admin=True)
        return AdminIssueListResponse(issues=issues, pagination=pagination, stats=admin_stats(db))
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, fetch)

@app.get("/admin/issues/{issue_id}", response_model=IssueAdmin)
async def admin_get_issue(issue_id: str, admin=Depends(get_current_admin), db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, lambda: get_issue(db, issue_id, admin=True))

@app.put("/admin/issues/{issue_id}", response_model=IssueUpdateResponse)
async def admin_update_issue(issue_id: str, update: IssueUpdate,
                             admin=Depends(get_current_admin), db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    issue = await loop.run_in_executor(executor, update_issue, db, issue_id, update)
    logger.info("Admin %s updated issue %s", admin["email"], issue_id)
    return IssueUpdateResponse(message="Issue updated successfully", issue=issue)

@app.delete("/admin/issues/{issue_id}", response_model=MessageResponse)
async def admin_delete_issue(issue_id: str, admin=Depends(get_current_admin), db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    await loop.run_in_executor(executor, delete_issue, db, issue_id)
    logger.info("Admin %s deleted issue %s", admin["email"], issue_id)
    return MessageResponse(message="Issue deleted successfully")

@app.get("/admin/dashboard", response_model=DashboardResponse)
async def admin_dashboard(period: int = Query(config.DASHBOARD_DEFAULT_PERIOD_DAYS, ge=1, le=365),
                          admin=Depends(get_current_admin), db=Depends(get_db)):
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(executor, dashboard_stats, db, period)

# ---------------------------------------------------------------------------
# HEALTH
# ---------------------------------------------------------------------------
@app.get("/")
async def root():
    return {"message": "Civic Issue Reporting System API"}

@app.get("/health")
async def health():
    return {"status": "healthy", "system": "Civic Issue Desk",
            "timestamp": datetime.now(timezone.utc)}


def main():
    uvicorn.run("civicdesk.api:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
