"""
Azure Cosmos DB database service layer

This module provides the document-store abstraction used by the grading
and session services. Includes retry with backoff, RU monitoring, batched
deletes and the ordered-query fallback used for listings.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Tuple
from azure.cosmos import ContainerProxy, DatabaseProxy, PartitionKey
from azure.cosmos.exceptions import (
    CosmosResourceNotFoundError,
    CosmosHttpResponseError,
    CosmosResourceExistsError,
)
import logging
from constants import CONTAINER, COLLECTIONS, SESSION_CACHE_MAX_AGE_SECONDS, SUBMISSION_DELETE_BATCH_SIZE

logger = logging.getLogger(__name__)


class CosmosDBMetrics:
    """Class to track Cosmos DB metrics and performance"""

    def __init__(self):
        self.total_request_charge = 0.0
        self.operation_count = 0
        self.operation_times = []

    def record_operation(self, request_charge: float, duration_ms: float, operation_type: str):
        """Record an operation's metrics"""
        self.total_request_charge += request_charge
        self.operation_count += 1
        self.operation_times.append(duration_ms)

        logger.debug(f"Cosmos DB {operation_type}: {request_charge} RU, {duration_ms:.2f}ms")

    def get_average_ru_per_operation(self) -> float:
        """Get average RU consumption per operation"""
        return self.total_request_charge / self.operation_count if self.operation_count > 0 else 0.0

    def get_average_duration(self) -> float:
        """Get average operation duration in milliseconds"""
        return sum(self.operation_times) / len(self.operation_times) if self.operation_times else 0.0


# Global metrics instance for monitoring
cosmos_metrics = CosmosDBMetrics()


class CosmosRetryConfig:
    """Configuration for Cosmos DB retry logic"""
    MAX_RETRIES = 3
    INITIAL_DELAY = 1.0  # seconds
    MAX_DELAY = 10.0     # seconds
    BACKOFF_MULTIPLIER = 2.0

    # HTTP status codes that should trigger a retry
    RETRYABLE_STATUS_CODES = {429, 503, 408, 500, 502, 504}


async def cosmos_retry_wrapper(operation, *args, operation_type: str = "unknown", **kwargs):
    """
    Wrapper for Cosmos DB operations with exponential backoff retry logic
    Handles transient errors, throttling scenarios, and performance monitoring
    """
    config = CosmosRetryConfig()
    last_exception = None
    start_time = time.time()

    for attempt in range(config.MAX_RETRIES + 1):
        try:
            result = await operation(*args, **kwargs) if asyncio.iscoroutinefunction(operation) else operation(*args, **kwargs)

            duration_ms = (time.time() - start_time) * 1000

            # Extract request charge from response
            request_charge = 0.0
            if hasattr(result, 'headers') and 'x-ms-request-charge' in result.headers:
                request_charge = float(result.headers['x-ms-request-charge'])
            elif hasattr(result, 'request_charge'):
                request_charge = float(result.request_charge)

            cosmos_metrics.record_operation(request_charge, duration_ms, operation_type)

            if request_charge > 50.0:
                logger.warning(f"High RU operation: {operation_type} consumed {request_charge} RU")

            return result

        except CosmosHttpResponseError as e:
            last_exception = e
            status_code = e.status_code

            if status_code not in config.RETRYABLE_STATUS_CODES or attempt == config.MAX_RETRIES:
                logger.error(f"Cosmos DB operation failed after {attempt + 1} attempts: {e}")
                raise

            delay = min(
                config.INITIAL_DELAY * (config.BACKOFF_MULTIPLIER ** attempt),
                config.MAX_DELAY
            )

            # For throttling (429), respect the retry-after header if present
            if status_code == 429 and e.headers:
                retry_after = e.headers.get('x-ms-retry-after-ms')
                if retry_after:
                    delay = max(delay, float(retry_after) / 1000.0)

            logger.warning(f"Cosmos DB operation failed (attempt {attempt + 1}/{config.MAX_RETRIES + 1}): {e}. Retrying in {delay}s")
            await asyncio.sleep(delay)

    raise last_exception


def _build_filter(filter_dict: Optional[Dict[str, Any]]) -> Tuple[List[str], List[Dict[str, Any]]]:
    conditions = []
    parameters = []
    for key, value in (filter_dict or {}).items():
        param_name = f"@{key}"
        conditions.append(f"c.{key} = {param_name}")
        parameters.append({"name": param_name, "value": value})
    return conditions, parameters


def sort_items(items: List[Dict[str, Any]], order_by: str, descending: bool = True) -> List[Dict[str, Any]]:
    """Client-side sort; items missing the sort key always go last."""
    present = [i for i in items if i.get(order_by) is not None]
    missing = [i for i in items if i.get(order_by) is None]
    present.sort(key=lambda i: i[order_by], reverse=descending)
    return present + missing


class CosmosDBService:
    """Service layer for Azure Cosmos DB operations"""

    def __init__(self, database_client: DatabaseProxy):
        self.database_client = database_client
        self._containers = {}

    def get_container(self, container_name: str) -> ContainerProxy:
        """Get or create container client"""
        if container_name not in self._containers:
            self._containers[container_name] = self.database_client.get_container_client(container_name)
        return self._containers[container_name]

    async def ensure_containers_exist(self):
        """Ensure required containers exist with proper partition keys and TTL."""
        containers_config = {
            CONTAINER["ASSESSMENTS"]: {"pk": "/id"},
            CONTAINER["QUESTIONS"]: {"pk": "/id"},
            CONTAINER["COURSES"]: {"pk": "/id"},
            CONTAINER["SUBMISSIONS"]: {"pk": "/assessment_id", "index_policy": {
                "indexingMode": "consistent",
                "automatic": True,
                "includedPaths": [{"path": "/*"}],
                "excludedPaths": [
                    {"path": "/code/?"},
                    {"path": "/test_case_results/*"}
                ]
            }},
            CONTAINER["USERS"]: {"pk": "/id"},
            CONTAINER["PROCTORING_EVENTS"]: {"pk": "/session_id"},
            CONTAINER["PROCTORING_SESSIONS"]: {"pk": "/user_id"},
            CONTAINER["ASSESSMENT_REVIEWS"]: {"pk": "/user_id"},
            CONTAINER["SESSION_CACHE"]: {"pk": "/user_id", "ttl": SESSION_CACHE_MAX_AGE_SECONDS},
        }
        for container_name, cfg in containers_config.items():
            try:
                container = self.database_client.get_container_client(container_name)
                container.read()
                logger.info(f"Container '{container_name}' already exists")
            except CosmosResourceNotFoundError:
                create_kwargs = {
                    "id": container_name,
                    "partition_key": PartitionKey(path=cfg["pk"]),
                }
                if "ttl" in cfg:
                    create_kwargs["default_ttl"] = cfg["ttl"]
                if "index_policy" in cfg:
                    create_kwargs["indexing_policy"] = cfg["index_policy"]
                try:
                    self.database_client.create_container(**create_kwargs)
                    logger.info(f"Created container '{container_name}' with pk '{cfg['pk']}'")
                except CosmosHttpResponseError as e:
                    logger.error(f"Failed to create container '{container_name}': {e}")
                    raise

    def infer_partition_key(self, container_name: str, item: Dict[str, Any]) -> Optional[str]:
        """Infer partition key value from item using COLLECTIONS metadata.
        Returns None if not inferable (caller will fall back to id).
        """
        for meta in COLLECTIONS.values():
            if meta["name"] == container_name:
                field = meta.get("pk_field")
                if field and field in item:
                    return item[field]
        return None

    async def auto_create_item(self, container_name: str, item: Dict[str, Any]) -> Dict[str, Any]:
        pk_val = self.infer_partition_key(container_name, item) or item.get("id")
        return await self.create_item(container_name, item, partition_key=pk_val)

    # CRUD Operations

    async def create_item(self, container_name: str, item: Dict[str, Any], partition_key: Optional[str] = None) -> Dict[str, Any]:
        """Create a new item in the container"""
        container = self.get_container(container_name)

        async def _create_operation():
            return container.create_item(body=item)

        try:
            response = await cosmos_retry_wrapper(_create_operation, operation_type=f"create:{container_name}")
            logger.info(f"Created item in '{container_name}': {response.get('id')}")
            return response
        except CosmosResourceExistsError:
            logger.warning(f"Item already exists in '{container_name}': {item.get('id')}")
            raise
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to create item in '{container_name}': {e}")
            raise

    async def read_item(self, container_name: str, item_id: str, partition_key: str) -> Optional[Dict[str, Any]]:
        """Read a specific item by ID and partition key"""
        container = self.get_container(container_name)

        async def _read_operation():
            return container.read_item(item=item_id, partition_key=partition_key)

        try:
            return await cosmos_retry_wrapper(_read_operation, operation_type=f"read:{container_name}")
        except CosmosResourceNotFoundError:
            return None
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to read item '{item_id}' from '{container_name}': {e}")
            raise

    async def upsert_item(self, container_name: str, item: Dict[str, Any], partition_key: Optional[str] = None) -> Dict[str, Any]:
        """Insert or update an item"""
        container = self.get_container(container_name)

        async def _upsert_operation():
            return container.upsert_item(body=item)

        try:
            response = await cosmos_retry_wrapper(_upsert_operation, operation_type=f"upsert:{container_name}")
            logger.info(f"Upserted item in '{container_name}': {response.get('id')}")
            return response
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to upsert item in '{container_name}': {e}")
            raise

    async def delete_item(self, container_name: str, item_id: str, partition_key: str) -> bool:
        """Delete an item by ID and partition key"""
        container = self.get_container(container_name)
        try:
            container.delete_item(item=item_id, partition_key=partition_key)
            logger.info(f"Deleted item '{item_id}' from '{container_name}'")
            return True
        except CosmosResourceNotFoundError:
            return False
        except CosmosHttpResponseError as e:
            logger.error(f"Failed to delete item '{item_id}' from '{container_name}': {e}")
            raise

    async def delete_items_batched(self, container_name: str, item_ids: List[str], partition_key: str,
                                   batch_size: int = SUBMISSION_DELETE_BATCH_SIZE) -> int:
        """Delete items sharing one partition key in transactional batches.

        Returns the number of deleted items.
        """
        container = self.get_container(container_name)
        deleted = 0
        for i in range(0, len(item_ids), batch_size):
            chunk = item_ids[i:i + batch_size]
            operations = [("delete", (item_id,)) for item_id in chunk]

            async def _batch_operation():
                return container.execute_item_batch(batch_operations=operations, partition_key=partition_key)

            await cosmos_retry_wrapper(_batch_operation, operation_type=f"batch_delete:{container_name}")
            deleted += len(chunk)
            logger.info(f"Batch deleted {len(chunk)} items from '{container_name}' (pk={partition_key})")
        return deleted

    async def query_items(self, container_name: str, query: str, parameters: Optional[List[Dict[str, Any]]] = None,
                          cross_partition: bool = True) -> List[Dict[str, Any]]:
        """Query items using SQL syntax"""
        container = self.get_container(container_name)
        try:
            query_results = container.query_items(
                query=query,
                parameters=parameters or [],
                enable_cross_partition_query=cross_partition
            )
            return list(query_results)
        except CosmosHttpResponseError as e:
            logger.error(f"Query failed in '{container_name}': {e}")
            raise

    async def find_one(self, container_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Find one item matching the equality filter"""
        conditions, parameters = _build_filter(filter_dict)
        if not conditions:
            return None

        query = f"SELECT * FROM c WHERE {' AND '.join(conditions)}"
        results = await self.query_items(container_name, query, parameters)
        return results[0] if results else None

    async def find_many(self, container_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                        limit: Optional[int] = None, order_by: Optional[str] = None,
                        descending: bool = True) -> List[Dict[str, Any]]:
        """Find multiple items matching the equality filter"""
        conditions, parameters = _build_filter(filter_dict)

        query = "SELECT * FROM c"
        if conditions:
            query += f" WHERE {' AND '.join(conditions)}"
        if order_by:
            query += f" ORDER BY c.{order_by} {'DESC' if descending else 'ASC'}"
        if limit:
            query += f" OFFSET 0 LIMIT {int(limit)}"

        return await self.query_items(container_name, query, parameters)

    async def find_many_ordered_with_fallback(self, container_name: str, order_by: str,
                                              filter_dict: Optional[Dict[str, Any]] = None,
                                              descending: bool = True) -> List[Dict[str, Any]]:
        """Ordered listing that degrades to an unordered query plus client-side sort.

        ORDER BY on a filtered cross-partition query needs a composite index; when
        the store rejects the ordered shape we fetch unordered and sort locally.
        """
        try:
            return await self.find_many(container_name, filter_dict, order_by=order_by, descending=descending)
        except CosmosHttpResponseError as e:
            logger.warning(f"Ordered query on '{container_name}' failed, falling back to client-side sort: {e}")
            items = await self.find_many(container_name, filter_dict)
            return sort_items(items, order_by, descending)

    async def update_item(self, container_name: str, item_id: str, update_data: Dict[str, Any],
                          partition_key: str) -> Optional[Dict[str, Any]]:
        """Update an existing item"""
        existing_item = await self.read_item(container_name, item_id, partition_key)
        if not existing_item:
            return None

        existing_item.update(update_data)
        return await self.upsert_item(container_name, existing_item, partition_key)

    async def count_items(self, container_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        """Count items in container with optional filter"""
        conditions, parameters = _build_filter(filter_dict)

        query = "SELECT VALUE COUNT(1) FROM c"
        if conditions:
            query += f" WHERE {' AND '.join(conditions)}"

        results = await self.query_items(container_name, query, parameters)
        return results[0] if results else 0

    def get_metrics(self) -> Dict[str, Any]:
        """Get current performance metrics"""
        return {
            "total_request_charge": cosmos_metrics.total_request_charge,
            "operation_count": cosmos_metrics.operation_count,
            "average_ru_per_operation": cosmos_metrics.get_average_ru_per_operation(),
            "average_duration_ms": cosmos_metrics.get_average_duration()
        }

    async def get_container_statistics(self, container_name: str) -> Dict[str, Any]:
        """Get container statistics and performance information"""
        container = self.get_container(container_name)

        try:
            properties = container.read()
            count_result = await self.query_items(container_name, "SELECT VALUE COUNT(1) FROM c")
            document_count = count_result[0] if count_result else 0

            return {
                "container_name": container_name,
                "document_count": document_count,
                "partition_key": properties.get("partitionKey", {}).get("paths", []),
                "default_ttl": properties.get("defaultTtl"),
            }

        except Exception as e:
            logger.error(f"Failed to get statistics for container '{container_name}': {e}")
            return {"error": str(e)}


async def get_cosmosdb_service(database_client: DatabaseProxy) -> CosmosDBService:
    """Get initialized CosmosDB service with containers"""
    service = CosmosDBService(database_client)
    await service.ensure_containers_exist()
    return service
