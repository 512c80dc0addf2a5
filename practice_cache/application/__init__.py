"""
Application Layer

FastAPI wiring for the caching and rate-limiting layer: lifespan,
rate-limit dependency, APM middleware and health routes.
"""
