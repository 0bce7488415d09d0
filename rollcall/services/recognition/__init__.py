"""Detection and embedding backends."""
