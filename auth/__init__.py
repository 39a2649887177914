"""auth/ -- Accounts, password hashing, JWT sessions and refresh rotation.

Layer rule: auth/ imports stdlib, third-party libraries, core/ and the
media/ uploader protocol. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
