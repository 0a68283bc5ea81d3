"""SQLite storage for usage accounting."""
