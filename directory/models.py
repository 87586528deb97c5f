"""
directory/models.py -- Records fetched from the directory service.

Ephemeral: they exist only between a fetch and the reconciliation pass that
merges them into the inventory.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class DirectoryUserRecord:
    login: str
    display_name: str = ""
    email: str = ""


@dataclass(frozen=True)
class DirectoryComputerRecord:
    name: str
    host_address: str = ""
    description: str = ""
