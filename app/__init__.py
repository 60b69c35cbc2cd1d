"""EventConnect realtime application."""
