"""Framework adapters: generic ASGI middleware and FastAPI wiring."""
