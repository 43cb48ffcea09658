"""Transport-side pieces: admission control, connection registry, outbound HTTP, FastAPI app."""
