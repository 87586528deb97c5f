"""
inventory/errors.py -- Expected failures raised by InventoryStore.

Route handlers map these to 400 responses by type. Anything else coming out
of the store (SQLAlchemy errors) is a server error.
"""


class InventoryError(Exception):
    """Base class for client-correctable store failures."""

    message = "inventory error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.message)


class UserNotFound(InventoryError):
    message = "user not found"


class LicenseNotFound(InventoryError):
    message = "license not found"
