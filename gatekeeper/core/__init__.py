"""Configuration, models, exceptions and component wiring."""
