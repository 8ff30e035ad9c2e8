"""Core module for leadsync configuration, errors and resilience."""
