"""Service layer for the redirect and tee decisions.

Services hold the request-level decision logic, keeping middleware and
routes thin and focused on ASGI/HTTP handling.

Layer hierarchy:
    Middleware / Routes (HTTP) -> Services (decisions) -> core (config, clients)

Services should:
- Be pure functions over ``RequestAttrs`` wherever possible
- Never raise for malformed request data; degrade to the default branch

Services should NOT:
- Write responses or cookies (middleware applies what services decide)
"""
