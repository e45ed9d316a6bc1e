"""Process supervision and event-driven monitors for a desktop status bar."""
