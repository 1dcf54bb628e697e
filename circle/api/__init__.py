"""REST API routers mounted under /api by circle.main."""
