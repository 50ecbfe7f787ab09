"""auth/ -- Authentication and credential lifecycle for the billing backend.

Layer rule: auth/ imports from core/ and third-party libraries only.
It does NOT import from api/; cache/ is referenced for typing only.
api/ imports from auth/, not the other way around.
"""
