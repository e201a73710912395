"""
staffplan - Resource Allocation & Capacity Engine

This package contains the staffplan backend services:
- engine: allocation conflict detection, capacity validation,
  over-allocation analysis, lifecycle management, utilization rollups
- storage: SQLAlchemy models, database adapter and repositories
- api: FastAPI adapter over the engine
- platform: Cross-cutting concerns (configuration, logging, metrics)
"""

__version__ = "0.1.0"
