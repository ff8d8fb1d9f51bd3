import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.openapi.utils import get_openapi

from app.api import academic_years, assessments, discounts, fees, payment_plans
from app.config import settings
from app.database import engine, Base
from app.exceptions import AssessmentEngineError
from app.middleware.logging import add_logging_middleware, setup_logging

API_TITLE = "School Finance API"
API_DESCRIPTION = (
    "Student assessment and discount engine: fee templates, statements of account, "
    "discounts and scholarships, payments and the academic year lifecycle"
)

# Initialize FastAPI app
app = FastAPI(
    title=API_TITLE,
    description=API_DESCRIPTION,
    version="1.0.0",
    docs_url=None,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup logging
setup_logging()
add_logging_middleware(app)
logger = logging.getLogger(__name__)


# Business-rule violations map to 4xx answers
@app.exception_handler(AssessmentEngineError)
async def engine_exception_handler(request: Request, exc: AssessmentEngineError):
    logger.info(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Custom exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "An unexpected error occurred. Please try again later."},
    )


# Create database tables
@app.on_event("startup")
async def startup():
    # Production schemas are managed by Alembic; this only fills in missing tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created or verified")


# Include routers
app.include_router(academic_years.router, prefix="/api", tags=["Academic Years"])
app.include_router(fees.router, prefix="/api", tags=["Fees"])
app.include_router(assessments.router, prefix="/api", tags=["Assessments"])
app.include_router(discounts.router, prefix="/api", tags=["Discounts"])
app.include_router(payment_plans.router, prefix="/api", tags=["Payment Plans"])


# Custom OpenAPI schema for documentation
@app.get("/api/docs", include_in_schema=False)
async def custom_swagger_ui_html():
    return get_swagger_ui_html(
        openapi_url="/api/openapi.json",
        title=f"{API_TITLE} Documentation",
        swagger_ui_parameters={"defaultModelsExpandDepth": -1},
    )


@app.get("/api/openapi.json", include_in_schema=False)
async def get_openapi_endpoint():
    return get_openapi(
        title=API_TITLE,
        version="1.0.0",
        description=API_DESCRIPTION,
        routes=app.routes,
    )


@app.get("/", tags=["Root"])
async def root():
    return {"message": f"Welcome to {API_TITLE}. Visit /api/docs for documentation."}


# Run the server
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=5000, reload=True)
