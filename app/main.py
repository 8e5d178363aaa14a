from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from app.config import settings
from app.database import DatabasePool
from app.core.logging import setup_logging
from app.core.exceptions import (
    APIError, api_exception_handler, http_exception_handler,
    request_validation_exception_handler, general_exception_handler
)
from app.core.middleware import session_validation_middleware, request_logging_middleware
from app.core.permissions import PermissionCache

# Initialize logging
setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool on startup and close it on shutdown"""
    await DatabasePool.create_pool()
    yield
    await DatabasePool.close_pool()


app = FastAPI(
    title="Event Ticketing API",
    description="API for event ticketing: events, ticket types, payments, QR tickets and check-in",
    version="1.0.0",
    debug=settings.debug,
    docs_url="/docs",
    lifespan=lifespan
)

# Cached claims per user, invalidated on every role/permission write
app.state.permission_cache = PermissionCache(max_entries=settings.permission_cache_size)

# Exception handlers
app.add_exception_handler(APIError, api_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware (order matters - first added runs last)
# Execution order: session_validation → logging
app.middleware("http")(request_logging_middleware)   # runs last
app.middleware("http")(session_validation_middleware) # runs first

# Import and include routers
from app.routers import (
    auth, events, ticket_types, transactions, tickets,
    scan_history, payments, users, roles
)

API_PREFIX = "/api"

# Authentication (login endpoints are public)
app.include_router(auth.router, prefix=f"{API_PREFIX}/auth", tags=["auth"])

# Events and ticket types (reads are public, writes require permissions)
app.include_router(events.router, prefix=f"{API_PREFIX}/events", tags=["events"])
app.include_router(ticket_types.router, prefix=f"{API_PREFIX}/jenis-tiket", tags=["jenis-tiket"])

# Purchases and payment notifications
app.include_router(transactions.router, prefix=f"{API_PREFIX}/transaksi", tags=["transaksi"])
app.include_router(payments.router, prefix=f"{API_PREFIX}/midtrans", tags=["midtrans"])

# Tickets and check-in
app.include_router(tickets.router, prefix=f"{API_PREFIX}/tiket", tags=["tiket"])
app.include_router(scan_history.router, prefix=f"{API_PREFIX}/scan-history", tags=["scan-history"])

# Administration
app.include_router(users.router, prefix=f"{API_PREFIX}/users", tags=["users"])
app.include_router(roles.router, prefix=f"{API_PREFIX}/roles", tags=["roles"])
app.include_router(roles.permissions_router, prefix=f"{API_PREFIX}/permissions", tags=["permissions"])


@app.get("/")
async def root():
    return {
        "service": "Event Ticketing API",
        "version": "1.0.0",
        "database": settings.db_name,
        "environment": settings.app_env
    }


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "database": settings.db_name,
        "host": settings.db_host,
        "pool": "open" if DatabasePool.is_open() else "closed"
    }


# Auto-start server if run directly
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
