# Routes package init
"""
Career Sewa API — Routes Package
==================================

Route Inventory:
    - health.py:  GET  /health                 (basic check)
                  GET  /health/detailed        (per-subsystem report)
                  GET  /health/liveness        (process alive)
                  GET  /health/readiness       (database reachable)
                  GET  /health/metrics         (plain-text gauges)
    - users.py:   POST /api/users              (register)
                  GET  /api/users              (active users)
                  GET  /api/users/{user_id}    (single user)

Routes stay thin: pull inputs from the request, call a service, wrap the
result in the response envelope. Errors are raised, never rendered here.
"""
