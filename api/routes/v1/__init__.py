"""api/routes/v1/ -- /api/v1 routers plus the /oauth token endpoints."""
