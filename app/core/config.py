import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://dbadmin:password@db:5432/outboxdb")

# Connection pool shared by every request in the process
DB_POOL_MIN_SIZE = int(os.getenv("DB_POOL_MIN_SIZE", 1))
DB_POOL_MAX_SIZE = int(os.getenv("DB_POOL_MAX_SIZE", 5))
DB_POOL_IDLE_TIMEOUT = float(os.getenv("DB_POOL_IDLE_TIMEOUT", 30)) # Seconds before an idle connection is closed
DB_CONNECT_TIMEOUT = float(os.getenv("DB_CONNECT_TIMEOUT", 10)) # Seconds to wait for a new connection
GENERATE_SCHEMAS = os.getenv("GENERATE_SCHEMAS", "true").lower() == "true"

# Application Metadata
PROJECT_NAME = "Car Outbox Service"
VERSION = "1.0.0"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Change-capture consumer configuration
OUTBOX_TABLE_NAME = os.getenv("OUTBOX_TABLE_NAME", "outbox")
EVENT_BUS_NAME = os.getenv("EVENT_BUS_NAME", "default")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
EVENT_BUS_ENDPOINT_URL = os.getenv("EVENT_BUS_ENDPOINT_URL") or None # e.g. a localstack endpoint

# PutEvents accepts at most 10 entries per call
MAX_PUBLISH_BATCH_SIZE = 10
PUBLISH_BATCH_SIZE = max(1, min(int(os.getenv("PUBLISH_BATCH_SIZE", MAX_PUBLISH_BATCH_SIZE)), MAX_PUBLISH_BATCH_SIZE))
