"""HTTP API for the SailMatch AI core."""
