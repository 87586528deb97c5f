"""api/ -- FastAPI application, JSON routes and error envelope for LicenseDesk."""
