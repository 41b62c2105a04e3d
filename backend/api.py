import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from error_handler import NotFoundError, TenderMatchError, ValidationError, error_handler
from generation_gateway import create_default_gateway
from shared_utils import get_cors_origins
from tender_review import ComplianceDocument, run_compliance_check, run_tender_ready

# Set up logging
logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

app = FastAPI(title="TenderMatch API", version=API_VERSION)

# CORS Configuration - Environment-based
CORS_ORIGINS = get_cors_origins()
logger.info(f"CORS origins: {CORS_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

# Process-wide gateway: owns the shared token window for every generation call
gateway = create_default_gateway()


# Global exception handlers
@app.exception_handler(TenderMatchError)
async def tendermatch_exception_handler(request: Request, exc: TenderMatchError):
    error_handler.log_error(exc, {'endpoint': str(request.url)})
    return JSONResponse(
        status_code=exc.status_code,
        content=error_handler.format_error_response(exc)
    )

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    validation_error = ValidationError(
        "Request validation failed",
        details={'validation_errors': [
            {"loc": list(err.get("loc", [])), "msg": err.get("msg", "")} for err in exc.errors()
        ]}
    )
    error_handler.log_error(validation_error, {'endpoint': str(request.url)})
    return JSONResponse(
        status_code=400,
        content=error_handler.format_error_response(validation_error)
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        error = NotFoundError("Endpoint not found", {'path': request.url.path})
    else:
        error = TenderMatchError(str(exc.detail), status_code=exc.status_code)
    error_handler.log_error(error, {'endpoint': str(request.url)})
    return JSONResponse(
        status_code=error.status_code,
        content=error_handler.format_error_response(error),
        headers=getattr(exc, "headers", None)
    )

@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    error_handler.log_error(exc, {'endpoint': str(request.url)})
    return JSONResponse(
        status_code=500,
        content=error_handler.format_error_response(exc)
    )


class TenderReadyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    company_profile: Optional[str] = Field(default=None, alias="companyProfile")
    tender_text: Optional[str] = Field(default=None, alias="tenderText")
    language: Optional[str] = None


class DocumentIn(BaseModel):
    name: str = ""
    type: str = ""
    summary: str = ""


class ComplianceCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tender_id: Optional[str] = Field(default=None, alias="tenderId")
    documents: List[DocumentIn] = []
    language: Optional[str] = None


# API Routes
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "TenderMatch FastAPI Backend",
        "version": API_VERSION,
        "status": "running"
    }

@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "tendermatch-backend",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": API_VERSION,
    }

@app.get("/api/token-status")
async def get_token_status():
    """Current admission window and usage statistics"""
    return {
        "status": "success",
        "window": gateway.limiter.snapshot(),
        "usage": gateway.token_manager.get_usage_stats(),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

@app.post("/api/tender-ready")
async def tender_ready(request: TenderReadyRequest):
    """Company profile vs. tender: narrative report plus scorecard"""
    logger.info("POST /api/tender-ready - processing started")
    result = await run_tender_ready(
        gateway,
        company_profile=request.company_profile,
        tender_text=request.tender_text,
        language=request.language,
    )
    return JSONResponse(status_code=result.status_code, content=result.to_response())

@app.post("/api/ai-compliance-check")
async def ai_compliance_check(request: ComplianceCheckRequest):
    """Declared documents vs. tender: narrative report plus scorecard"""
    logger.info("POST /api/ai-compliance-check - processing started")
    documents = [
        ComplianceDocument(name=doc.name, type=doc.type, summary=doc.summary)
        for doc in request.documents
    ]
    result = await run_compliance_check(
        gateway,
        tender_id=request.tender_id,
        documents=documents,
        language=request.language,
    )
    return JSONResponse(status_code=result.status_code, content=result.to_response())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
