"""auth/ -- Authentication, lockout and token lifecycle for SchoolGate.

Layer rule: auth/ imports stdlib, third-party libraries and core.config only.
It does NOT import from api/. api/ and the admin CLI (main.py) import from
auth/, not the other way around.
"""
