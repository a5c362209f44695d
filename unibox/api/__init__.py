"""HTTP surface: routes, dependencies and middleware."""
