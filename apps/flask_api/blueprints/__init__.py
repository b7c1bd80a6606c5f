"""Flask API Blueprints package.

- health: public health check with cache state
- snapshot: authenticated snapshot download
"""

from apps.flask_api.blueprints.health import health_bp
from apps.flask_api.blueprints.snapshot import snapshot_bp

__all__ = [
    "health_bp",
    "snapshot_bp",
]
