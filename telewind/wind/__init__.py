"""Wind observation source."""
