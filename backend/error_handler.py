"""
Centralized Error Handling for the TenderMatch backend
"""
import logging
import traceback
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from enum import Enum

from shared_utils import LOG_FILE, LOG_LEVEL

class ErrorType(Enum):
    """Error type classifications"""
    VALIDATION = "validation"
    BUDGET_EXCEEDED = "budget_exceeded"
    RATE_LIMITED = "rate_limited"
    UPSTREAM = "upstream"
    PARSE = "parse"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"

class TenderMatchError(Exception):
    """Base exception class for the TenderMatch backend"""
    def __init__(self, message: str, error_type: ErrorType = ErrorType.UNKNOWN,
                 details: Optional[Dict] = None, status_code: int = 500):
        self.message = message
        self.error_type = error_type
        self.details = details or {}
        self.status_code = status_code
        self.timestamp = datetime.now(timezone.utc).isoformat()
        super().__init__(self.message)

class ValidationError(TenderMatchError):
    """Missing or empty required input; raised before any generation call."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorType.VALIDATION, details, 400)

class BudgetExceededError(TenderMatchError):
    """A single request costs more than the whole per-minute budget. Not retryable."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorType.BUDGET_EXCEEDED, details, 413)

class RateLimitedError(TenderMatchError):
    """Transient provider throttling."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorType.RATE_LIMITED, details, 429)

class UpstreamError(TenderMatchError):
    """Provider failure, timeout, or rate limiting that outlived the retries."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorType.UPSTREAM, details, 502)

class ParseError(TenderMatchError):
    """Generated text held no decodable findings. Recovered locally."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorType.PARSE, details, 422)

class NotFoundError(TenderMatchError):
    """Unknown endpoint."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorType.NOT_FOUND, details, 404)

class ErrorHandler:
    """Centralized error handling and logging"""

    def __init__(self):
        self.setup_logging()

    def setup_logging(self):
        """Configure logging for the whole process"""
        handlers = [logging.StreamHandler()]
        if LOG_FILE:
            handlers.append(logging.FileHandler(LOG_FILE))
        logging.basicConfig(
            level=getattr(logging, LOG_LEVEL, logging.INFO),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=handlers
        )
        self.logger = logging.getLogger('TenderMatch')

    def log_error(self, error: Exception, context: Optional[Dict] = None):
        """Log error with context information"""
        error_info = {
            'error_type': type(error).__name__,
            'message': str(error),
            'context': context or {},
        }

        if isinstance(error, TenderMatchError):
            error_info.update({
                'error_classification': error.error_type.value,
                'details': error.details,
                'status_code': error.status_code,
                'timestamp': error.timestamp
            })
            self.logger.warning(f"Error occurred: {error_info}")
        else:
            error_info['traceback'] = traceback.format_exc()
            self.logger.error(f"Error occurred: {error_info}")
        return error_info

    def format_error_response(self, error: Exception, include_traceback: bool = False) -> Dict[str, Any]:
        """Format error for API response"""
        if isinstance(error, TenderMatchError):
            response = {
                'ok': False,
                'error': error.message,
                'type': error.error_type.value,
                'status_code': error.status_code,
                'timestamp': error.timestamp
            }
            if error.details:
                response['details'] = error.details
        else:
            response = {
                'ok': False,
                'error': 'An unexpected error occurred',
                'type': ErrorType.UNKNOWN.value,
                'status_code': 500,
                'timestamp': datetime.now(timezone.utc).isoformat()
            }

        if include_traceback:
            response['traceback'] = traceback.format_exc()

        return response

    def handle_upstream_error(self, service_name: str, error: Exception) -> UpstreamError:
        """Wrap a raw provider exception with context"""
        details = {
            'service': service_name,
            'original_error': str(error),
            'error_type': type(error).__name__
        }
        status_code = getattr(error, 'status_code', None)
        if isinstance(status_code, int):
            details['provider_status'] = status_code
        return UpstreamError(f"Generation service error from {service_name}", details)

# Global error handler instance
error_handler = ErrorHandler()
