"""core/ -- Configuration kernel. No imports from any other LicenseDesk package."""
