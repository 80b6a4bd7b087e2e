"""auth/ -- Authentication and authorization package for the baby tracker.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, web/, or tracker/. cache/ is referenced for
type hints only. api/ and web/ import from auth/, not the other way around.
"""
