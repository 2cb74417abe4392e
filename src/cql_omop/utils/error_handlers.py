import logging
from typing import Optional, List

import httpx

logger = logging.getLogger(__name__)


class VSACError(Exception):
    """Base class for VSAC retrieval failures."""

    code = "UNKNOWN_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        if code:
            self.code = code
        self.status_code = status_code

    @property
    def guidance(self) -> List[str]:
        return get_vsac_error_guidance(self)

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "errorCode": self.code,
            "statusCode": self.status_code,
            "guidance": self.guidance
        }


class VSACCredentialsError(VSACError):
    code = "AUTH_REQUIRED"


class VSACAuthenticationError(VSACError):
    code = "AUTH_FAILED"


class VSACAccessForbiddenError(VSACError):
    code = "ACCESS_FORBIDDEN"


class VSACNotFoundError(VSACError):
    code = "VALUESET_NOT_FOUND"


class VSACRateLimitError(VSACError):
    code = "RATE_LIMIT"


class VSACServiceUnavailableError(VSACError):
    code = "SERVICE_UNAVAILABLE"


class VSACNetworkError(VSACError):
    code = "NETWORK_ERROR"


class VSACTimeoutError(VSACError):
    code = "TIMEOUT"


class VSACUnknownError(VSACError):
    code = "UNKNOWN_ERROR"


def raise_for_vsac_status(response: httpx.Response, value_set_id: str) -> None:
    """Raise the VSAC error matching a non-200 response."""
    status = response.status_code
    if status == 200:
        return

    logger.error(f"VSAC returned HTTP {status} for {value_set_id}")

    if status == 401:
        raise VSACAuthenticationError(
            'VSAC authentication failed. Check your UMLS username and password.',
            status_code=401
        )
    if status == 403:
        raise VSACAccessForbiddenError(
            'VSAC access forbidden. Ensure your UMLS account has VSAC access enabled.',
            status_code=403
        )
    if status == 404:
        raise VSACNotFoundError(
            f'Value set not found: {value_set_id}. Verify the OID is correct.',
            status_code=404
        )
    if status == 429:
        raise VSACRateLimitError(
            'VSAC rate limit exceeded. Please wait before retrying.',
            status_code=429
        )
    if status >= 500:
        raise VSACServiceUnavailableError(
            'VSAC service temporarily unavailable. Please try again later.',
            status_code=status
        )
    raise VSACUnknownError(
        f'VSAC API error ({status}): {response.text[:200]}',
        status_code=status
    )


def classify_transport_error(error: Exception, value_set_id: str) -> VSACError:
    """Map a local transport failure onto a VSAC error kind."""
    logger.error(f"Transport error for {value_set_id}: {type(error).__name__}: {error}")

    if isinstance(error, httpx.TimeoutException):
        return VSACTimeoutError('VSAC request timed out. The service may be slow, try again.')
    if isinstance(error, httpx.TransportError):
        return VSACNetworkError('Unable to connect to VSAC. Check your internet connection.')
    return VSACUnknownError(f'Unexpected VSAC error: {error}')


def get_vsac_error_guidance(error: VSACError) -> List[str]:
    """Get guidance for resolving VSAC errors."""
    guidance_map = {
        'AUTH_REQUIRED': [
            'Provide your UMLS username and password',
            'Or set VSAC_USERNAME and VSAC_PASSWORD in the .env file'
        ],
        'AUTH_FAILED': [
            'Verify your UMLS username and password',
            'Check if your UMLS account is active',
            'Try logging into https://uts.nlm.nih.gov/uts/ manually'
        ],
        'ACCESS_FORBIDDEN': [
            'Log into your UMLS account at https://uts.nlm.nih.gov/uts/',
            'Navigate to "Profile" and ensure VSAC access is enabled',
            'Contact UMLS support if access issues persist'
        ],
        'VALUESET_NOT_FOUND': [
            'Verify the ValueSet OID format (e.g., 2.16.840.1.113883.x.x.x)',
            'Check if the ValueSet exists in VSAC web interface',
            'Try searching for the ValueSet by name in VSAC'
        ],
        'RATE_LIMIT': [
            'Wait 60 seconds before retrying',
            'Reduce the number of concurrent requests',
            'Consider batching multiple ValueSet requests'
        ],
        'SERVICE_UNAVAILABLE': [
            'Wait a few minutes and retry',
            'Check VSAC service status',
            'Try during off-peak hours'
        ],
        'NETWORK_ERROR': [
            'Check your internet connection',
            'Verify firewall/proxy settings allow HTTPS to vsac.nlm.nih.gov',
            'Try from a different network'
        ],
        'TIMEOUT': [
            'Retry with a smaller batch size',
            'Try during off-peak hours when VSAC is less busy',
            'Check your network connection speed'
        ]
    }

    return guidance_map.get(error.code, [
        'Check the error message for specific details',
        'Verify your VSAC credentials and network connection',
        'Try again after a short wait'
    ])
