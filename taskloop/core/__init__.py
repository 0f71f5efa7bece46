"""Configuration, storage, logging and scheduling infrastructure."""
