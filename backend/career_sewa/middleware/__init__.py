# Middleware package init
"""
Career Sewa API — Middleware Package
======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters!):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Rate Limit first: rejects abusive clients before any other work.
       Health paths are exempt so probes keep working under load.
    2. Request ID: correlation id for every log line of the request.
    3. Logging: method, path, status and duration, tagged with the id.

    Responses travel the chain in reverse. A 429 produced by the rate
    limiter never reaches the inner middleware, so it carries no request id.
"""
