"""Configuration, middleware and service wiring."""
