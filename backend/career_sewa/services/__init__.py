# Services package init
"""
Career Sewa API — Services Layer
==================================

What:  Business logic between routes (HTTP) and the database.

Service Inventory:
    - HealthService: subsystem probes and the overall health verdict
    - UserService:   user creation, lookup and password checks

Services raise taxonomy errors (career_sewa.exceptions) and never build
HTTP responses, so they can be tested without a client.
"""
