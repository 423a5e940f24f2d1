"""HTTP transport for FallacyScan."""
