"""Cross-module services: calendar mapping and notifications."""
