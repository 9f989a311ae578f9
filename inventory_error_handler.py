# inventory_error_handler.py (v1.4)
import logging

import requests
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

DUPLICATE_CODE_MESSAGE = "You already have a product with this code. Please use a different code."

# Error kinds shared by the CRUD layer and the scanner
NETWORK = "network"
PERMISSION = "permission"
PROCESSING = "processing"
DUPLICATE = "duplicate"
AUTH = "auth"
CAMERA = "camera"


def _postgres_error_code(response):
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        return body.get("code")
    return None


def handle_api_error(e, operation_name):
    """
    Centralized error handling for backend requests.
    Logs specific error messages and returns a user-friendly result.
    This function always returns a dictionary with 'success': False,
    'message' and 'error_kind'.
    """
    error_message = f"An unexpected error occurred during {operation_name}."
    error_kind = PROCESSING
    if isinstance(e, requests.exceptions.HTTPError):
        status_code = e.response.status_code
        response_text = e.response.text
        logging.error(f"HTTP error {status_code} during {operation_name}: {e}. Response: {response_text}")
        if _postgres_error_code(e.response) == "23505":
            error_message = DUPLICATE_CODE_MESSAGE
            error_kind = DUPLICATE
        elif status_code == 400:
            error_message = f"Error 400: Bad Request. Check the submitted data. Details: {response_text}"
        elif status_code == 401:
            error_message = "Your session has expired. Please sign in again."
            error_kind = PERMISSION
        elif status_code == 403:
            error_message = f"You do not have permission to perform {operation_name}."
            error_kind = PERMISSION
        elif status_code == 404:
            error_message = f"Error 404: Not Found. Details: {response_text}"
        elif status_code == 409:
            error_message = f"Conflict while performing {operation_name}. Details: {response_text}"
        elif status_code == 429:
            retry_after = e.response.headers.get('Retry-After', 'N/A')
            error_message = f"Too many requests. Try again in {retry_after} seconds."
            error_kind = NETWORK
        elif status_code >= 500:
            error_message = f"The service is unavailable right now (HTTP {status_code}). Try again shortly."
            error_kind = NETWORK
        else:
            error_message = f"An unexpected HTTP error {status_code} occurred: {e.response.reason}. Details: {response_text}"
    elif isinstance(e, (requests.exceptions.ConnectionError, EndpointConnectionError)):
        logging.error(f"Network connection error during {operation_name}: {e}")
        error_message = "No internet connection. Check your network and try again."
        error_kind = NETWORK
    elif isinstance(e, requests.exceptions.Timeout):
        logging.error(f"Request timed out during {operation_name}: {e}")
        error_message = "The request timed out. Check your connection and try again."
        error_kind = NETWORK
    elif isinstance(e, ClientError):
        code = e.response.get("Error", {}).get("Code", "Unknown")
        logging.error(f"Object storage error {code} during {operation_name}: {e}")
        if code in ("AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch"):
            error_message = "Image storage rejected the credentials."
            error_kind = PERMISSION
        else:
            error_message = f"Image storage error during {operation_name} ({code})."
    elif isinstance(e, BotoCoreError):
        logging.error(f"Object storage client error during {operation_name}: {e}")
        error_message = f"Image storage is unavailable during {operation_name}."
        error_kind = NETWORK
    elif isinstance(e, ValueError):  # Catches JSON decoding errors
        logging.error(f"Failed to parse response for {operation_name}: {e}")
        error_message = f"Failed to parse the service response for {operation_name}."
    elif isinstance(e, requests.exceptions.RequestException):
        logging.error(f"An unexpected general requests error occurred during {operation_name}: {e}")
        error_message = f"An unexpected error occurred during the request: {e}"
        error_kind = NETWORK
    else:
        logging.error(f"An unknown error occurred during {operation_name}: {e}", exc_info=True)
        error_message = f"An unknown error occurred during {operation_name}."
    return {"success": False, "message": error_message, "error_kind": error_kind}


def not_authenticated():
    return {"success": False, "message": "Not signed in.", "error_kind": AUTH}
