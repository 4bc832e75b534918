"""HTTP surface of the RBAC authority (FastAPI application, routers and error envelope)."""
