"""External interfaces for Parlance."""
