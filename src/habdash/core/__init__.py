"""Core infrastructure shared by every dashboard component."""
