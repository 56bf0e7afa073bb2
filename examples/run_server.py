"""
Minimal mailbus server script.

Usage:
    python examples/run_server.py [--host HOST] [--port PORT]
        [--max-messages N] [--seq-start N] [--max-message-size N] [--discard]
        [--postgres DSN]

Options:
    --host HOST             Bind address (default: 127.0.0.1)
    --port PORT             Port to listen on (default: 8765)
    --max-messages N        Capacity of each mailbox (default: 100)
    --seq-start N           First message id (default: 1)
    --max-message-size N    Maximum message size in bytes (default: 1024)
    --discard               Reject sends to a full mailbox instead of evicting
                            the oldest message
    --postgres DSN          Keep mailboxes in PostgreSQL instead of memory
"""

import argparse
import asyncio
import logging

from mailbus.errors import AlreadyInitialized
from mailbus.server import Server
from mailbus.storage import MemoryBackend

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def main() -> None:
    parser = argparse.ArgumentParser(description="mailbus server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8765)
    parser.add_argument("--max-messages", type=int, default=100)
    parser.add_argument("--seq-start", type=int, default=1)
    parser.add_argument("--max-message-size", type=int, default=1024)
    parser.add_argument(
        "--discard", action="store_true", help="Reject sends to a full mailbox"
    )
    parser.add_argument("--postgres", metavar="DSN", help="PostgreSQL connection string")
    args = parser.parse_args()

    postgres = None
    if args.postgres:
        from mailbus.backends.postgres import (  # pylint: disable=import-outside-toplevel
            PostgresBackend,
        )

        postgres = PostgresBackend(args.postgres)
        await postgres.create_table_if_not_exists()
        backend = postgres
    else:
        backend = MemoryBackend()

    server = Server(host=args.host, port=args.port, backend=backend)
    try:
        await server.initialize(
            args.max_messages, args.seq_start, args.max_message_size, args.discard
        )
    except AlreadyInitialized:
        logger.info("store already initialized, keeping its configuration")

    await server.start()
    logger.info(
        "mailbus server listening on %s:%d (discard=%s)",
        args.host,
        server.port,
        args.discard,
    )

    try:
        await asyncio.Future()  # run forever
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await server.stop()
        if postgres is not None:
            await postgres.close()
        logger.info("server stopped")


if __name__ == "__main__":
    asyncio.run(main())
