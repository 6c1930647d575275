"""Entry point: wires all components and starts the gRPC server."""

from __future__ import annotations

import logging
import signal
import sys
from concurrent import futures

import grpc

import config
from velocity.clock import system_clock
from velocity.engine import VelocityEngine
from velocity.service import VelocityServicer, build_generic_handler
from velocity.storage import ModelStorageClient
from velocity.suggestions import SuggestionGenerator
from velocity.user_state import UserStateStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_server(engine: VelocityEngine) -> grpc.Server:
    """Construct and configure the gRPC server with all dependencies wired.

    Args:
        engine: The :class:`~velocity.engine.VelocityEngine` serving requests.

    Returns:
        A configured but not-yet-started :class:`grpc.Server`.
    """
    servicer = VelocityServicer(engine=engine)

    server = grpc.server(
        futures.ThreadPoolExecutor(max_workers=config.GRPC_MAX_WORKERS)
    )
    server.add_generic_rpc_handlers((build_generic_handler(servicer),))
    server.add_insecure_port(
        f"{config.GRPC_SERVER_HOST}:{config.GRPC_SERVER_PORT}"
    )
    return server


def main() -> None:
    """Initialise all components and start the gRPC server.

    Startup sequence:
    1. Connect to the model storage server as a gRPC client.
    2. Build the user state store and the engine.
    3. Start the background persistence thread.
    4. Register ``SIGTERM``/``SIGINT`` shutdown handlers.
    5. Build and start the gRPC server.

    User models are loaded lazily on each user's first request.
    """
    logger.info("Connecting to model storage at %s", config.STORAGE_SERVER_ADDRESS)
    storage_channel = grpc.insecure_channel(config.STORAGE_SERVER_ADDRESS)
    storage = ModelStorageClient(
        storage_channel, timeout_seconds=config.STORAGE_TIMEOUT_SECONDS
    )

    clock = system_clock(config.VELOCITY_TIMEZONE)
    user_state_store = UserStateStore(
        storage,
        clock=clock,
        learning_rate=config.LEARNING_RATE,
        buffer_size=config.TRAINING_BUFFER_SIZE,
    )
    engine = VelocityEngine(
        user_state_store,
        generator=SuggestionGenerator(),
        clock=clock,
        default_velocity=config.DEFAULT_VELOCITY,
        cold_start=config.COLD_START_ENABLED,
    )

    user_state_store.start_persist_loop(config.STATE_PERSIST_INTERVAL_SECONDS)

    server = build_server(engine)

    def handle_shutdown(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, persisting user state and shutting down.", sig_name)
        user_state_store.persist_all_to_storage()
        server.stop(grace=5)
        storage_channel.close()
        sys.exit(0)

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    server.start()
    logger.info(
        "Velocity gRPC server listening on %s:%d",
        config.GRPC_SERVER_HOST,
        config.GRPC_SERVER_PORT,
    )
    server.wait_for_termination()


if __name__ == "__main__":
    main()
