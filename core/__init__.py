"""Configuration, errors and runtime wiring."""
