"""FastAPI server exposing the execution engine over HTTP and SSE."""
