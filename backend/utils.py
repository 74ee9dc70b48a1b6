"""Backend utility functions for the survey workflow API."""
from flask import jsonify, request
from pydantic import ValidationError as PydanticValidationError
from shared.schemas import format_pydantic_errors
from shared.validation import ValidationError
import logging


logger = logging.getLogger(__name__)


def api_error(message, status_code=400, log_level='warning', details=None, code=None):
    """
    Standardized API error response with consistent logging.

    Args:
        message (str): Error message for the client
        status_code (int): HTTP status code
        log_level (str): Logging level ('debug', 'info', 'warning', 'error', 'critical')
        details (dict, optional): Additional details for logging and the response
        code (str, optional): Machine-readable error code

    Returns:
        Flask response: JSON error response
    """
    log_func = getattr(logger, log_level, logger.warning)
    if details:
        log_func(f"API Error ({status_code}): {message} - Details: {details}")
    else:
        log_func(f"API Error ({status_code}): {message}")

    payload = {'error': message}
    if code:
        payload['code'] = code
    if details:
        payload['details'] = details
    return jsonify(payload), status_code


def handle_api_exception(e, operation="operation", status_code=500):
    """
    Handle unexpected exceptions in API endpoints with consistent logging and responses.

    Args:
        e (Exception): The exception that occurred
        operation (str): Description of the operation being performed
        status_code (int): HTTP status code to return

    Returns:
        Flask response: JSON error response
    """
    logger.error(f"Exception during {operation}: {str(e)}", exc_info=True)
    return api_error(f"Failed to {operation}", status_code, 'error', code='internal_error')


def parse_json_body(schema):
    """Validate the request JSON body against a pydantic schema.

    Raises:
        ValidationError: body missing or invalid, with pydantic errors flattened
    """
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError('Request body must be JSON')
    try:
        return schema(**data)
    except PydanticValidationError as e:
        raise ValidationError(format_pydantic_errors(e))
    except TypeError:
        raise ValidationError('Request body must be a JSON object')


def pagination_args(default_limit=50, max_limit=100):
    """Read limit/offset query arguments with bounds."""
    limit = min(max(request.args.get('limit', default_limit, type=int), 1), max_limit)
    offset = max(request.args.get('offset', 0, type=int), 0)
    return limit, offset
