"""Project-wide constants (fragment sizes, default ports, timeouts)."""

FRAGMENT_SIZE_BYTES: int = 400 * 1024 * 1024  # 400 MiB default fragment size
UPLOAD_TASK_SIZE_BYTES: int = 4 * 1024 * 1024  # 4 MiB per upload task
STREAM_PIECE_SIZE_BYTES: int = 1 * 1024 * 1024  # 1 MiB per fetch stream piece

MERKLE_LEAF_SIZE_BYTES: int = 256

MAX_INFLIGHT_TASKS: int = 8
MAX_PARALLEL_FRAGMENTS: int = 2

REQUEST_TIMEOUT_SECONDS: float = 30.0
FINALITY_TIMEOUT_SECONDS: float = 300.0
FINALITY_POLL_INTERVAL_SECONDS: float = 1.0

MAX_RETRIES: int = 3
RETRY_BACKOFF_MULTIPLIER: float = 2.0

INDEXER_PORT: int = 8080
STORAGE_NODE_PORT: int = 50051
STORAGE_NODE_SERVICE: str = "shardline.StorageNode"

GRPC_KEEPALIVE_TIME_MS: int = 30000
GRPC_KEEPALIVE_TIMEOUT_MS: int = 10000
# JSON + base64 framing inflates payloads by ~4/3
GRPC_MAX_MESSAGE_BYTES: int = 64 * 1024 * 1024
# Largest upload task whose base64 body plus JSON envelope fits in one message
MAX_UPLOAD_TASK_SIZE_BYTES: int = (GRPC_MAX_MESSAGE_BYTES - 64 * 1024) // 4 * 3

HEARTBEAT_INTERVAL_SECONDS: int = 10
NODE_STALE_THRESHOLD_SECONDS: int = 60

DEFAULT_NODE_STORAGE_PATH: str = "./data/fragments"
DEFAULT_CONFIG_DIR: str = "~/.shardline"
NODE_CLEANUP_INTERVAL_SECONDS: int = 30
