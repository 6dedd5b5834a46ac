"""Configuration and registry access."""
