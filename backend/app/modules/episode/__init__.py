"""Episode records and their video processing fields."""
