"""Server-side service wiring and FastAPI dependencies."""
