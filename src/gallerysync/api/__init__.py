"""gallerysync — FastAPI REST API layer.

This package contains the FastAPI application factory and the Pydantic
request models.

Modules
-------
main
    FastAPI application factory, route handlers, error mapping and the
    ``main()`` CLI entry point.
models
    Pydantic models for admin request validation.
"""
