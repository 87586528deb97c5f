"""auth/ -- Sign-in, session tokens and the per-request access gate for LicenseDesk.

Layer rule: auth/ may import from core/ and directory/ only.
It does NOT import from api/, web/, or inventory/.
api/ and web/ import from auth/, not the other way around.
"""
