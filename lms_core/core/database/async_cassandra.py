"""Async Cassandra connection using cassandra-asyncio-driver.

Provides:
- One process-wide cluster/session with aexecute() support
- Execution profile tuned for lightweight transactions (LOCAL_QUORUM reads
  and writes, LOCAL_SERIAL for IF conditions)
- Keyspace and table creation from each module's CQL definitions
"""

from cassandra import ConsistencyLevel
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import EXEC_PROFILE_DEFAULT, ExecutionProfile
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra_asyncio.cluster import Cluster

from lms_core.catalog.models import CATALOG_TABLES_CQL
from lms_core.config.settings import Settings, get_settings
from lms_core.core.logging import get_logger
from lms_core.enrollments.models import ENROLLMENTS_TABLES_CQL
from lms_core.progress.models import PROGRESS_TABLES_CQL
from lms_core.users.models import USERS_TABLES_CQL


logger = get_logger(__name__)

# (module name, table statements), created in this order
SCHEMA_MODULES: list[tuple[str, list[str]]] = [
    ("users", USERS_TABLES_CQL),
    ("catalog", CATALOG_TABLES_CQL),
    ("progress", PROGRESS_TABLES_CQL),
    ("enrollments", ENROLLMENTS_TABLES_CQL),
]


def build_execution_profile(settings: Settings) -> ExecutionProfile:
    """Default profile for every statement the services run.

    Compare-and-set writes (IF NOT EXISTS, IF version = ?, IF status = ?)
    need a serial consistency; plain reads use LOCAL_QUORUM so they observe
    any write acknowledged by a quorum.
    """
    return ExecutionProfile(
        load_balancing_policy=TokenAwarePolicy(
            DCAwareRoundRobinPolicy(local_dc=settings.cassandra_local_dc)
        ),
        consistency_level=ConsistencyLevel.LOCAL_QUORUM,
        serial_consistency_level=ConsistencyLevel.LOCAL_SERIAL,
        request_timeout=settings.cassandra_request_timeout,
    )


class AsyncCassandraConnection:
    """Process-wide Cassandra cluster and session.

    The API lifespan and the reconciliation script share this class, so
    both run statements with the same consistency settings.
    """

    _cluster: Cluster | None = None
    _session = None  # Session type from cassandra_asyncio

    @classmethod
    def connect(cls):
        """Connect to the cluster, reusing an open session.

        Raises:
            ConnectionError: If no contact point can be reached
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

        cls._cluster = Cluster(
            contact_points=settings.cassandra_hosts,
            port=settings.cassandra_port,
            auth_provider=auth_provider,
            protocol_version=settings.cassandra_protocol_version,
            execution_profiles={EXEC_PROFILE_DEFAULT: build_execution_profile(settings)},
            connect_timeout=settings.cassandra_connect_timeout,
        )

        try:
            cls._session = cls._cluster.connect()
        except Exception as e:
            logger.error(
                "cassandra_connection_failed",
                hosts=settings.cassandra_hosts,
                error=str(e),
            )
            cls._cluster.shutdown()
            cls._cluster = None
            raise ConnectionError(f"Failed to connect to Cassandra: {e}") from e

        logger.info(
            "cassandra_connected",
            hosts=settings.cassandra_hosts,
            port=settings.cassandra_port,
            local_dc=settings.cassandra_local_dc,
        )
        return cls._session

    @classmethod
    def disconnect(cls) -> None:
        """Close session and cluster."""
        if cls._session is not None:
            cls._session.shutdown()
            cls._session = None

        if cls._cluster is not None:
            cls._cluster.shutdown()
            cls._cluster = None
            logger.info("cassandra_disconnected")

    @classmethod
    def is_connected(cls) -> bool:
        """Check if connection is active."""
        return cls._session is not None and not cls._session.is_shutdown


def keyspace_cql(keyspace: str, settings: Settings) -> str:
    """CREATE KEYSPACE statement for the current environment."""
    if settings.is_production:
        replication = (
            "'class': 'NetworkTopologyStrategy', "
            f"'{settings.cassandra_local_dc or 'datacenter1'}': "
            f"{settings.cassandra_replication_factor}"
        )
    else:
        replication = "'class': 'SimpleStrategy', 'replication_factor': 1"

    return (
        f"CREATE KEYSPACE IF NOT EXISTS {keyspace} "
        f"WITH replication = {{{replication}}} AND durable_writes = true"
    )


async def init_async_tables(session, keyspace: str) -> None:
    """Create the tables of every module in SCHEMA_MODULES."""
    for module, statements in SCHEMA_MODULES:
        for cql_template in statements:
            await session.aexecute(cql_template.format(keyspace=keyspace))
        logger.info("schema_module_ready", module=module, tables=len(statements))


async def init_async_cassandra():
    """Connect, create keyspace and tables, and select the keyspace.

    Returns:
        Cassandra session with aexecute() support
    """
    settings = get_settings()
    keyspace = settings.cassandra_keyspace

    session = AsyncCassandraConnection.connect()

    await session.aexecute(keyspace_cql(keyspace, settings))
    session.set_keyspace(keyspace)
    await init_async_tables(session, keyspace)

    logger.info("cassandra_schema_initialized", keyspace=keyspace)
    return session


async def shutdown_async_cassandra() -> None:
    """Shutdown async Cassandra connection."""
    AsyncCassandraConnection.disconnect()
