"""
Constants and configuration values used across the phil codebase.
"""

# Network ports
DEFAULT_HOST = "localhost"
DEFAULT_BASE_PORT = 27017

# Default names
DEFAULT_REPLICA_SET_NAME = "phil"
DEFAULT_CONFIG_SERVER_SET_NAME = "phil-config-server"
DEFAULT_SHARD_NAME_TEMPLATE = "phil-replset-shard-{index}"
DEFAULT_DATA_ROOT = "./data"
DEFAULT_PID_DIR = "./data/.pids"

# Default topology sizes
DEFAULT_REPLICA_SET_NODES = 3
DEFAULT_NUM_SHARDS = 1
DEFAULT_NUM_MONGOS = 2
SHARD_TYPE_SINGLE = "single"
SHARD_TYPE_REPLSET = "replset"
VALID_SHARD_TYPES = (SHARD_TYPE_SINGLE, SHARD_TYPE_REPLSET)

# Binaries
MONGOD_BINARY = "mongod"
MONGOS_BINARY = "mongos"

# Retry and timeout configuration
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0  # seconds
DEFAULT_RETRY_BACKOFF = 2.0  # exponential backoff multiplier
DEFAULT_RETRY_MAX_DELAY = 10.0  # seconds

# Quick retry configuration
QUICK_RETRY_ATTEMPTS = 2
QUICK_RETRY_DELAY = 0.5  # seconds
QUICK_RETRY_BACKOFF = 1.5

# Persistent retry configuration (node reachability, primary election)
PERSISTENT_RETRY_ATTEMPTS = 10
PERSISTENT_RETRY_DELAY = 0.25  # seconds
PERSISTENT_RETRY_BACKOFF = 2.0
PERSISTENT_RETRY_MAX_DELAY = 5.0  # seconds

# Process management timeouts
PROCESS_WAIT_TIMEOUT = 5  # seconds
SERVER_SELECTION_TIMEOUT_MS = 2000

# Cancellation policies
ON_CANCEL_KILL = "kill"
ON_CANCEL_LEAVE = "leave"
VALID_ON_CANCEL = (ON_CANCEL_KILL, ON_CANCEL_LEAVE)

# Authentication defaults
DEFAULT_AUTH_USERNAME = "phil"
DEFAULT_AUTH_PASSWORD = "ravi"
KEY_FILE_CONTENTS = "phil and ravi"

# TLS defaults
DEFAULT_CA_FILE = "./ca.pem"
DEFAULT_SERVER_CERT_FILE = "./server.pem"
DEFAULT_CLIENT_CERT_FILE = "./client.pem"

# Server error codes treated as already-satisfied states
ERROR_CODE_ALREADY_INITIALIZED = 23
ERROR_CODE_USER_ALREADY_EXISTS = 51003

# Server error codes expected while a replica set is still settling
ERROR_CODE_NOT_YET_INITIALIZED = 94
ERROR_CODE_CONFIGURATION_IN_PROGRESS = 109
ERROR_CODE_CURRENT_CONFIG_NOT_COMMITTED = 308
ERROR_CODE_NOT_WRITABLE_PRIMARY = 10107
RECONFIG_RETRY_CODES = (
    ERROR_CODE_CONFIGURATION_IN_PROGRESS,
    ERROR_CODE_CURRENT_CONFIG_NOT_COMMITTED,
    ERROR_CODE_NOT_WRITABLE_PRIMARY,
)

# Returned when auth is enabled and the command needs credentials
ERROR_CODE_UNAUTHORIZED = 13

# Replica set member states
MEMBER_STATE_PRIMARY = "PRIMARY"

# Error messages
ERROR_NODE_NOT_RUNNING = "Node {node} is not running"
ERROR_BINARY_NOT_FOUND = "{binary} binary not found"
ERROR_INVALID_PORT = "Port must be between 1 and 65535"
ERROR_FILE_NOT_FOUND = "File not found: {path}"
