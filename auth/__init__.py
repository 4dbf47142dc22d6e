"""auth/ -- Accounts, sessions and the admin guard for LabelForge.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, admin/, or plans/ at runtime.
api/ and admin/ import from auth/, not the other way around.
"""
