"""Application package for the alcohol licence training service.

This package exposes the wizard, service, repository and model modules
used by the FastAPI application in `licensing.main`. Individual modules
contain the concrete implementations and documentation.
"""
