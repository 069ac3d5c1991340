"""Core configuration, logging, errors and actor resolution."""
