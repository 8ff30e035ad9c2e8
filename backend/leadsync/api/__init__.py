"""HTTP API for leadsync."""
