"""HTTP surface (read-only audit views)."""
