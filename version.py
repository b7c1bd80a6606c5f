"""Project version constants.

Reported by the health endpoint and the CLI so a served snapshot can be traced
back to the code (and embedded schema revision) that produced it.
"""

ENGINE_NAME: str = "ysws-snapshot"
ENGINE_VERSION: str = "0.1.0"

SCHEMA_VERSION: int = 1
