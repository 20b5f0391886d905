"""SQLite storage for compile job records and events."""
