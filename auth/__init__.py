"""auth/ -- Credential hashing, sessions, verification tokens and rate limiting.

Layer rule: auth/ imports stdlib, third-party libraries and core/ (settings
and error types). It does NOT import from api/. api/ imports from auth/, not
the other way around.
"""
