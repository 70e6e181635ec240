"""FastAPI dependencies shared by the routers."""
from fastapi import HTTPException

from database import CosmosDBService
from session import SessionRegistry, session_registry


async def get_cosmosdb() -> CosmosDBService:
    """Cosmos DB service for the current app; 503 when running without a database."""
    from main import database_client
    if database_client is None:
        raise HTTPException(status_code=503, detail="Database not available. Check connection configuration.")
    if isinstance(database_client, CosmosDBService):
        return database_client
    return CosmosDBService(database_client)


def get_session_registry() -> SessionRegistry:
    return session_registry
