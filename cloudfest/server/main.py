import argparse
import asyncio
from grpc import aio
from .service import RegistryService, build_handler, logger  # Reuse the same logger
from .authority import ChatAuthority
from .journal import EventJournal
from .hub import Hub

async def serve(owner: str, host="127.0.0.1", port=50051, fee=0, journal_path=None):
    """Start the registry server.

    Sets up and runs the gRPC server over a fresh ChatAuthority.
    Initializes all required components:
    - Chat authority owned by ``owner``
    - Notification hub for live subscribers
    - Optional JSONL journal of notifications

    Args:
        owner (str): Identity holding the owner capability
        host (str): Hostname to bind server to. Defaults to localhost.
        port (int): Port number to listen on. Defaults to 50051.
        fee (int): Initial registration fee. Defaults to 0.
        journal_path (str, optional): JSONL file receiving every notification

    Side Effects:
        - Starts gRPC server
        - Logs server startup progress
    """
    server = aio.server()
    authority = ChatAuthority(owner, registration_fee=fee)
    if journal_path:
        authority.subscribe(EventJournal(journal_path))
        logger.info(f"Journaling notifications to {journal_path}")
    service = RegistryService(authority, Hub())
    server.add_generic_rpc_handlers((build_handler(service),))
    listen_addr = f"{host}:{port}"
    server.add_insecure_port(listen_addr)
    logger.info(f"Server starting, listening on {listen_addr}")
    await server.start()
    logger.info(f"Server is now running on {listen_addr}")
    await server.wait_for_termination()

def main():
    parser = argparse.ArgumentParser(description="Cloudfest chat registry server")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=50051)
    parser.add_argument("--owner", required=True, help="Identity holding the owner capability")
    parser.add_argument("--fee", type=int, default=0, help="Initial registration fee")
    parser.add_argument("--journal", default=None, help="JSONL file receiving notifications")
    args = parser.parse_args()
    asyncio.run(serve(args.owner, args.host, args.port, args.fee, args.journal))

if __name__ == "__main__":
    main()
