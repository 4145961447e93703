"""FastAPI application layer: factory, lifespan, middleware and handlers."""
