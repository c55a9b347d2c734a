"""Host-side helpers: working directory, settings and logging."""
