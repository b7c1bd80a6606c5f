"""Flask API utilities package.

- responses: Standardized JSON response helpers
- auth: API key extraction and constant-time comparison
"""

from apps.flask_api.utils.auth import api_key_matches, extract_api_key
from apps.flask_api.utils.responses import _err, _ok

__all__ = [
    # responses
    "_ok",
    "_err",
    # auth
    "api_key_matches",
    "extract_api_key",
]
