"""Async Cassandra database connection using cassandra-asyncio-driver.

Provides:
- Async connection pool management
- Session with aexecute() for non-blocking queries
- Keyspace and governance table initialization (async)

Progress writes rely on lightweight transactions, so the default execution
profile pins the serial consistency to LOCAL_SERIAL.
"""

import structlog
from cassandra import ConsistencyLevel
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import EXEC_PROFILE_DEFAULT, ExecutionProfile
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra_asyncio.cluster import Cluster

from src.config.settings import get_settings
from src.governance.models import GOVERNANCE_TABLES_CQL


logger = structlog.get_logger(__name__)


class AsyncCassandraConnection:
    """Async Cassandra connection manager.

    Manages cluster connection and session lifecycle with async support.
    Uses cassandra-asyncio-driver for non-blocking execute via aexecute().
    """

    _cluster: Cluster | None = None
    _session = None  # Session type from cassandra_asyncio

    @classmethod
    def connect(cls):
        """Establish connection to Cassandra cluster.

        Returns:
            Active Cassandra session with aexecute() support

        Raises:
            ConnectionError: If connection fails
        """
        if cls._session is not None:
            return cls._session

        settings = get_settings()

        auth_provider = None
        if settings.cassandra_username and settings.cassandra_password:
            auth_provider = PlainTextAuthProvider(
                username=settings.cassandra_username,
                password=settings.cassandra_password,
            )

        profile = ExecutionProfile(
            load_balancing_policy=TokenAwarePolicy(
                DCAwareRoundRobinPolicy(local_dc=settings.cassandra_local_dc)
            ),
            consistency_level=ConsistencyLevel.LOCAL_QUORUM,
            serial_consistency_level=ConsistencyLevel.LOCAL_SERIAL,
            request_timeout=settings.cassandra_request_timeout,
        )

        cls._cluster = Cluster(
            contact_points=settings.cassandra_hosts,
            port=settings.cassandra_port,
            auth_provider=auth_provider,
            protocol_version=settings.cassandra_protocol_version,
            execution_profiles={EXEC_PROFILE_DEFAULT: profile},
            connect_timeout=settings.cassandra_connect_timeout,
        )

        try:
            cls._session = cls._cluster.connect()
            logger.info(
                "async_cassandra_connected",
                hosts=settings.cassandra_hosts,
                port=settings.cassandra_port,
                protocol_version=settings.cassandra_protocol_version,
                local_dc=settings.cassandra_local_dc,
            )
        except Exception as e:
            logger.error("async_cassandra_connection_failed", error=str(e))
            raise ConnectionError(f"Failed to connect to Cassandra: {e}") from e

        return cls._session

    @classmethod
    def get_session(cls):
        """Get active session, connecting if necessary."""
        if cls._session is None:
            return cls.connect()
        return cls._session

    @classmethod
    def disconnect(cls) -> None:
        """Close connection to Cassandra."""
        if cls._session is not None:
            cls._session.shutdown()
            cls._session = None
            logger.info("async_cassandra_session_closed")

        if cls._cluster is not None:
            cls._cluster.shutdown()
            cls._cluster = None
            logger.info("async_cassandra_cluster_closed")

    @classmethod
    def is_connected(cls) -> bool:
        """Check if connection is active."""
        return cls._session is not None and not cls._session.is_shutdown


async def init_async_keyspace(session, keyspace: str) -> None:
    """Create keyspace if not exists (async).

    LOCAL_SERIAL needs a quorum of replicas in the local datacenter, so
    anything beyond development uses NetworkTopologyStrategy.
    """
    settings = get_settings()

    if settings.is_development or settings.is_testing:
        replication = "'class': 'SimpleStrategy', 'replication_factor': 1"
    else:
        datacenter = settings.cassandra_local_dc or "datacenter1"
        replication = (
            "'class': 'NetworkTopologyStrategy', "
            f"'{datacenter}': {settings.cassandra_replication_factor}"
        )

    cql = f"""
        CREATE KEYSPACE IF NOT EXISTS {keyspace}
        WITH replication = {{{replication}}}
        AND durable_writes = true
    """

    await session.aexecute(cql)
    logger.info("async_keyspace_created", keyspace=keyspace)


async def init_async_governance_tables(session, keyspace: str) -> None:
    """Create lesson progress, access code and attendance tables (async)."""
    for cql_template in GOVERNANCE_TABLES_CQL:
        cql = cql_template.format(keyspace=keyspace)
        await session.aexecute(cql)
    logger.info(
        "async_governance_tables_created",
        keyspace=keyspace,
        tables=len(GOVERNANCE_TABLES_CQL),
    )


async def init_async_cassandra():
    """Initialize async Cassandra connection and schema.

    Returns:
        Configured Cassandra session with aexecute() support
    """
    settings = get_settings()

    session = AsyncCassandraConnection.connect()

    await init_async_keyspace(session, settings.cassandra_keyspace)
    session.set_keyspace(settings.cassandra_keyspace)
    await init_async_governance_tables(session, settings.cassandra_keyspace)

    logger.info(
        "async_cassandra_initialized",
        keyspace=settings.cassandra_keyspace,
    )

    return session


async def shutdown_async_cassandra() -> None:
    """Shutdown async Cassandra connection."""
    AsyncCassandraConnection.disconnect()
