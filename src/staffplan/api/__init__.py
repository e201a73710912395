"""HTTP adapter: FastAPI routers over the allocation engine."""
