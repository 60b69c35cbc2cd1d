"""EventConnect realtime chat building blocks."""
