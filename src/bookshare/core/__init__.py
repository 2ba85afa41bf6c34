"""Process-level plumbing: settings, database, logging, tracing."""
