from aiohttp import (
    AsyncResolver,
    ClientSession,
    ClientTimeout,
    DummyCookieJar,
    TCPConnector,
)
from azure.core.pipeline.transport import AioHttpTransport
from azure.identity.aio import DefaultAzureCredential

from reminders.helpers.cache import lru_acache
from reminders.helpers.logging import logger


@lru_acache()
async def aiohttp_session() -> ClientSession:
    """
    HTTP session shared by the store, the channel and the credential.

    One per event loop, released by `close_clients`.
    """
    return ClientSession(
        # Same as the SDK defaults
        auto_decompress=False,
        trust_env=True,
        # Calls are stateless
        cookie_jar=DummyCookieJar(),
        connector=TCPConnector(resolver=AsyncResolver()),
        # A stuck call must not stall the whole cycle
        timeout=ClientTimeout(
            connect=5,
            total=30,
        ),
    )


@lru_acache()
async def azure_transport() -> AioHttpTransport:
    # Cosmos DB and Queue Storage SDKs retry on their own, nothing added here
    return AioHttpTransport(
        session=await aiohttp_session(),
        session_owner=False,  # Released by close_clients, not by each SDK client
    )


@lru_acache()
async def credential() -> DefaultAzureCredential:
    """
    Azure credential for Cosmos DB and Queue Storage.

    Managed identity in Azure, developer credentials locally.
    """
    return DefaultAzureCredential(
        transport=await azure_transport(),
    )


async def close_clients() -> None:
    """
    Release the shared credential and HTTP session, at shutdown.

    Only what was built on the running loop is closed, console and SQLite modes build nothing.
    """
    shared_credential: DefaultAzureCredential | None = credential.cached()  # pyright: ignore
    if shared_credential:
        await shared_credential.close()
        credential.evict()  # pyright: ignore

    session: ClientSession | None = aiohttp_session.cached()  # pyright: ignore
    if session:
        await session.close()
        # Transport wraps the closed session
        azure_transport.evict()  # pyright: ignore
        aiohttp_session.evict()  # pyright: ignore
        logger.debug("Shared HTTP session closed")
