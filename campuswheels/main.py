import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import LOG_LEVEL, ENVIRONMENT, CORS_ORIGINS

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Import routers
from .auth import router as auth_router
from .email_verification import router as email_verification_router
from .rides import router as rides_router
from .ratings import router as ratings_router
from .complaints import router as complaints_router
from .sos import router as sos_router
from .admin import router as admin_router

# Import database
from .database import client, db, ensure_indexes

# Create FastAPI app
app = FastAPI(
    title="Campus Wheels API",
    description="Campus carpooling: rides, seats, ratings, complaints and SOS alerts",
    version="1.0.0"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    logger.info("%s %s -> %d", request.method, request.url.path, response.status_code)
    return response

# Errors are always {"error": "..."}
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = {"error": exc.detail}
    body.update(getattr(exc, "extra", None) or {})
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", []) if part not in ("body", "query", "path"))
        messages.append(f"{field}: {error.get('msg')}" if field else error.get("msg", "Invalid request"))
    return JSONResponse(status_code=400, content={"error": "; ".join(messages) or "Invalid request"})

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = {"error": "Internal server error"}
    if ENVIRONMENT == "development":
        body["details"] = str(exc)
    return JSONResponse(status_code=500, content=body)

# Include routers
app.include_router(email_verification_router)
app.include_router(auth_router)
app.include_router(rides_router)
app.include_router(ratings_router)
app.include_router(complaints_router)
app.include_router(sos_router)
app.include_router(admin_router)

# Startup event
@app.on_event("startup")
def startup_event():
    try:
        # Test database connection
        client.admin.command("ping")
        logger.info("Connected to MongoDB")
    except Exception:
        logger.exception("Failed to connect to MongoDB")
        raise
    ensure_indexes(db)

# Shutdown event
@app.on_event("shutdown")
def shutdown_event():
    client.close()
    logger.info("Database connection closed")

# Root endpoint
@app.get("/")
def root():
    return {
        "message": "Welcome to Campus Wheels API",
        "version": "1.0.0",
        "endpoints": {
            "email_verification": "/api/email-verification",
            "auth": "/api/auth",
            "rides": "/api/rides",
            "ratings": "/api/ratings",
            "complaints": "/api/complaints",
            "sos": "/api/sos",
            "admin": "/api/admin",
            "health": "/api/health"
        }
    }

# Health check
@app.get("/api/health")
def health_check():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "Campus Wheels API"
    }
