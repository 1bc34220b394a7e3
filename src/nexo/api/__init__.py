"""HTTP API -- FastAPI app, routes, rate limiting and error mapping."""
