"""Per-repository management resources."""
