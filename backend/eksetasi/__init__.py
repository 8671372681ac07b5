"""Application package for the Eksetasi exam platform backend.

This package exposes the service, repository and model modules used by
the FastAPI application: role-based access control, exam assembly,
submission scoring and review. Individual modules contain the concrete
implementations and documentation.
"""
