"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON logging
    errors          — exception hierarchy & handlers
    middleware      — request logging
    health          — health check aggregation
    database        — async SQLAlchemy engine & sessions
    security        — actor identity from request headers
"""
