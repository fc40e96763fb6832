"""SQLite-backed persistence for conversation state."""
