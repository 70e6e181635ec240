from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from azure.cosmos import CosmosClient
from azure.cosmos.cosmos_client import ConnectionPolicy
from azure.identity import DefaultAzureCredential
import os
import logging
import time
from contextlib import asynccontextmanager

from constants import (
    ALLOWED_ORIGINS,
    COSMOS_DB_CONSISTENCY_LEVEL,
    COSMOS_DB_ENDPOINT,
    COSMOS_DB_KEY,
    DATABASE_NAME,
    LOG_LEVEL,
    CONTAINER,
)
from database import CosmosDBService, get_cosmosdb_service
from datetime_utils import now_utc_iso
from routers import admin, candidate, utils
from session import session_registry
from session_cache import CosmosSessionStore, SessionCache

# Configure logging
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

# Cosmos DB connection
cosmos_client = None
database_client = None


def create_optimized_cosmos_client(endpoint: str) -> CosmosClient:
    """Create Cosmos DB client with performance optimizations"""
    connection_policy = ConnectionPolicy()
    connection_policy.connection_mode = "Gateway"
    connection_policy.request_timeout = 30

    preferred_locations = os.getenv("COSMOS_DB_PREFERRED_LOCATIONS", "").split(",")
    if preferred_locations and preferred_locations[0]:
        connection_policy.preferred_locations = [loc.strip() for loc in preferred_locations]

    connection_policy.retry_options.max_retry_attempt_count = 3
    connection_policy.retry_options.fixed_retry_interval_in_milliseconds = 1000
    connection_policy.retry_options.max_wait_time_in_seconds = 10

    # account key when configured, otherwise managed identity / az login
    credential = COSMOS_DB_KEY or DefaultAzureCredential()

    return CosmosClient(
        url=endpoint,
        credential=credential,
        connection_policy=connection_policy,
        consistency_level=COSMOS_DB_CONSISTENCY_LEVEL,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    global cosmos_client, database_client

    try:
        if COSMOS_DB_ENDPOINT:
            cosmos_client = create_optimized_cosmos_client(COSMOS_DB_ENDPOINT)
            database_client = cosmos_client.get_database_client(DATABASE_NAME)

            db_service = await get_cosmosdb_service(database_client)
            session_registry.configure(cache=SessionCache(CosmosSessionStore(db_service)))
            logger.info(f"Connected to Cosmos DB: {DATABASE_NAME}")
        else:
            logger.warning("COSMOS_DB_ENDPOINT not provided, running in development mode")
            cosmos_client = None
            database_client = None
    except Exception as e:
        logger.error(f"Cosmos DB connection failed, running without database: {e}")
        cosmos_client = None
        database_client = None

    yield

    session_registry.close_all()
    logger.info("Closed active assessment sessions")


app = FastAPI(
    title="Coding Assessments",
    description="Backend API for timed coding assessments: execution, grading, sessions and reviews",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and latency of every request"""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {process_time:.4f}s")
    return response


@app.get("/")
async def root():
    return {"message": "Coding Assessments API", "version": "1.0.0"}


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "database": "connected" if database_client is not None else "disconnected",
        "activeSessions": len(session_registry),
    }


@app.get("/metrics")
async def get_metrics():
    """Get Cosmos DB performance metrics"""
    if database_client is None:
        raise HTTPException(status_code=503, detail="Database not available")

    try:
        db_service = database_client if isinstance(database_client, CosmosDBService) else CosmosDBService(database_client)
        service_metrics = db_service.get_metrics()
        container_stats = {}
        for container_name in CONTAINER.values():
            try:
                container_stats[container_name] = await db_service.get_container_statistics(container_name)
            except Exception as e:
                container_stats[container_name] = {"error": str(e)}

        return {
            "service_metrics": service_metrics,
            "container_statistics": container_stats,
            "timestamp": now_utc_iso()
        }
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to get metrics: {str(e)}")


app.include_router(candidate.router, prefix="/api/candidate", tags=["candidate"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])
app.include_router(utils.router, prefix="/api/utils", tags=["utils"])


def main():
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
