"""
CORS development proxy.

Forwards requests from a locally running client to a fixed HTTPS upstream
and answers with permissive cross-origin headers.
"""

__version__ = "1.0.0"
