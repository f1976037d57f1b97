import json
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from train_dispatch.domains.orchestration.schemas.constants import NodeState


class PollAttempt(BaseModel):
    attempt_number: int
    observed_state: NodeState
    timestamp: datetime


class CommandBatch(BaseModel):
    """Ordered shell program lines handed to the execution channel as one submission."""
    model_config = ConfigDict(frozen=True)

    lines: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.lines)

    def script(self) -> str:
        return "\n".join(self.lines)

    def payload_size(self) -> int:
        # size of the "commands" parameter as the channel receives it
        return len(json.dumps(list(self.lines)).encode("utf-8"))


class ExecutionOptions(BaseModel):
    timeout_seconds: int
    log_group: Optional[str] = None
    document_name: str = "AWS-RunShellScript"
    comment: Optional[str] = None


class DispatchResult(BaseModel):
    correlation_id: str
    node_id: str
    summary: str = ""
    units_processed: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)
