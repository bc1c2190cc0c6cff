"""api/routes/ -- Versioned REST routers."""
