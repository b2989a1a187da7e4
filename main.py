"""
FastAPI main application for the tutoring compensation engine.
Teacher salaries, deduction waivers and controller earnings.
"""
import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from services.exceptions import (
    CompensationError,
    ConcurrencyConflict,
    DataStoreUnavailable,
    EntityNotFound,
    InvalidRequest,
    WaiverStateError,
)

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Tutoring Compensation API",
    description="Teacher salary, deduction waiver and controller earnings API",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS
origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:3001").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)


# Domain errors -> HTTP status
ERROR_STATUS = (
    (EntityNotFound, 404),
    (InvalidRequest, 400),
    (WaiverStateError, 409),
    (ConcurrencyConflict, 409),
    (DataStoreUnavailable, 503),
)


@app.exception_handler(CompensationError)
async def compensation_error_handler(request: Request, exc: CompensationError) -> JSONResponse:
    """Translate service-layer errors into HTTP responses."""
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# Health check endpoint
@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "Tutoring Compensation API",
        "version": "1.0.0",
        "environment": os.getenv("ENVIRONMENT", "development")
    }


@app.get("/health")
async def health_check():
    """Detailed health check with database status"""
    from database import engine
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError as e:
        db_status = f"error: {str(e)}"

    return {
        "status": "healthy" if db_status == "connected" else "unhealthy",
        "database": db_status,
        "environment": os.getenv("ENVIRONMENT", "development")
    }


from routers import teacher_payments, controller_earnings, deduction_adjustments

# Register routers
app.include_router(teacher_payments.router, prefix="/api", tags=["teacher-payments"])
app.include_router(controller_earnings.router, prefix="/api", tags=["controller-earnings"])
app.include_router(deduction_adjustments.router, prefix="/api", tags=["deduction-adjustments"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("ENVIRONMENT", "development") == "development",
    )
