"""Task infrastructure: Taskiq broker, middleware and APScheduler."""
