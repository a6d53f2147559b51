"""
Core package — cross-cutting concerns.

Modules:
    config    — environment variables, settings & the frozen relay config
    logging   — structured JSON logging
    errors    — exception hierarchy & handlers
    health    — health check aggregation
    middleware — request logging & correlation IDs
"""
