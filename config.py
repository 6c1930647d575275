"""Application configuration driven by environment variables.

All settings have sensible defaults for local development.
"""

import os

# ---------------------------------------------------------------------------
# Velocity gRPC server (the web backend connects to us on this address)
# ---------------------------------------------------------------------------

GRPC_SERVER_HOST: str = os.getenv("GRPC_SERVER_HOST", "0.0.0.0")
GRPC_SERVER_PORT: int = int(os.getenv("GRPC_SERVER_PORT", "50051"))

# Thread pool size for the gRPC server.  Each concurrent RPC occupies one
# thread, so this caps concurrent request handling.
GRPC_MAX_WORKERS: int = int(os.getenv("GRPC_MAX_WORKERS", "10"))

# ---------------------------------------------------------------------------
# Model storage server (we connect to it as a gRPC client)
# ---------------------------------------------------------------------------

STORAGE_SERVER_ADDRESS: str = os.getenv("STORAGE_SERVER_ADDRESS", "localhost:50052")

# Deadline for each LoadUserModel / SaveUserModel call.
STORAGE_TIMEOUT_SECONDS: float = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "5"))

# ---------------------------------------------------------------------------
# Velocity model
# ---------------------------------------------------------------------------

# IANA zone used for hour-of-day (peak / low-energy hours, time-of-day rules).
VELOCITY_TIMEZONE: str = os.getenv("VELOCITY_TIMEZONE", "UTC")

TRAINING_BUFFER_SIZE: int = int(os.getenv("TRAINING_BUFFER_SIZE", "50"))
LEARNING_RATE: float = float(os.getenv("LEARNING_RATE", "0.1"))

# Velocity reported for a user before any window was scored.
DEFAULT_VELOCITY: float = float(os.getenv("DEFAULT_VELOCITY", "100"))

# Score interaction-count windows with the cold-start estimator until the
# user's first learning batch has run.
COLD_START_ENABLED: bool = os.getenv("COLD_START_ENABLED", "true").lower() in (
    "1",
    "true",
    "yes",
)

# ---------------------------------------------------------------------------
# User state persistence
# ---------------------------------------------------------------------------

# How often (seconds) to persist dirty user state to the storage server.
STATE_PERSIST_INTERVAL_SECONDS: int = int(
    os.getenv("STATE_PERSIST_INTERVAL_SECONDS", "60")
)
