import enum


class NodeState(str, enum.Enum):
    STOPPED = "stopped"
    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    UNKNOWN = "unknown"

    @classmethod
    def from_platform(cls, raw_state: str) -> "NodeState":
        try:
            return cls(raw_state)
        except ValueError:
            return cls.UNKNOWN


class TransferDirection(str, enum.Enum):
    FORWARD = "forward"
    REVERSE = "reverse"


class WorkflowKind(str, enum.Enum):
    BULK_TRANSFER = "bulk_transfer"
    TRAINING_LAUNCH = "training_launch"


CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Credentials": "true",
}

PREFLIGHT_HEADERS = {
    **CORS_HEADERS,
    "Access-Control-Allow-Methods": "GET,POST,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type,Authorization,X-Api-Key",
}
