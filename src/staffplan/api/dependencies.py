from typing import Annotated, Generator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from staffplan.engine import AllocationEngine
from staffplan.storage.database import DatabaseAdapter


# The app owns one adapter and one engine, set up in create_app()

def get_adapter(request: Request) -> DatabaseAdapter:
    return request.app.state.adapter


def get_engine(request: Request) -> AllocationEngine:
    return request.app.state.engine


def get_db(adapter: Annotated[DatabaseAdapter, Depends(get_adapter)]) -> Generator[Session, None, None]:
    """One transactional scope per request; commits after the handler returns."""
    with adapter.get_session() as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
EngineDep = Annotated[AllocationEngine, Depends(get_engine)]
