"""
ERROR TAXONOMY
==============

Every failure the gateway reports before the first streamed byte is a GatewayError:
it knows its HTTP status, an optional machine-readable code, and how to render the
JSON body the client expects. Failures after streaming starts (StreamInterruptedError)
terminate the stream instead, and ExtractionError never leaves the background pipeline.

  GatewayError             500  base class
  AuthError                401  missing or unresolvable bearer credential
  LimitCheckError          500  LIMIT_CHECK_ERROR      - quota lookup itself failed
  RateLimitError           429  MESSAGE_LIMIT_REACHED  - free daily quota used up
  ValidationError          400  malformed body or blank question
  ConfigurationError       500  upstream credential missing
  UpstreamError            500  provider unreachable or non-2xx before streaming
  StreamInterruptedError        read/decode failure mid-stream
  ExtractionError               anything wrong inside memory extraction
"""

from typing import Optional


class GatewayError(Exception):
    status_code = 500
    code: Optional[str] = None

    def __init__(self, message: str, *, details: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code

    def to_payload(self) -> dict:
        """JSON body: always "error", plus "code" and "details" when set."""
        payload = {"error": self.message}
        if self.code:
            payload["code"] = self.code
        if self.details:
            payload["details"] = self.details
        return payload


class AuthError(GatewayError):
    status_code = 401


class LimitCheckError(GatewayError):
    status_code = 500
    code = "LIMIT_CHECK_ERROR"


class RateLimitError(GatewayError):
    status_code = 429
    code = "MESSAGE_LIMIT_REACHED"


class ValidationError(GatewayError):
    status_code = 400


class ConfigurationError(GatewayError):
    status_code = 500


class UpstreamError(GatewayError):
    status_code = 500

    def __init__(self, details: str, *, status: Optional[int] = None):
        super().__init__("Failed to process request", details=details)
        self.status = status


class StreamInterruptedError(GatewayError):
    """Raised out of the response stream; the client sees the connection end abnormally."""


class ExtractionError(GatewayError):
    """Internal to the memory pipeline; logged and dropped, never sent to a client."""
