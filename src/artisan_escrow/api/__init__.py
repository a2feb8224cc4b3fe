"""HTTP surface: dependencies, middleware and routes."""
