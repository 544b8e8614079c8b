"""Pydantic models for workflow graphs and their executions."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class NodeType(str, Enum):
    """Behavioral type of a workflow node."""

    START = "start"
    WORK_TASK = "work_task"
    DISPLAY = "display"
    ASSIGNMENT = "assignment"
    LOOP = "loop"
    AI_JUDGMENT = "ai_judgment"
    WORKFLOW = "workflow"


class ExecutionStatus(str, Enum):
    """Lifecycle status of a workflow execution."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"
    WAITING = "waiting"


class NodeRunStatus(str, Enum):
    """Per-node status within one execution."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class BranchLabel(str, Enum):
    """Canonical connection labels understood by branching nodes."""

    YES = "Yes"
    NO = "No"


class Position(BaseModel):
    """Canvas layout hint."""

    x: float = 0
    y: float = 0


class WorkflowMetadata(BaseModel):
    """Version, timestamps and an optional node/edge snapshot used for copies."""

    version: int = 1
    created_at: str | None = Field(default=None, alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")
    last_run_at: str | None = Field(default=None, alias="lastRunAt")
    snapshot: dict[str, Any] | None = None

    model_config = {"populate_by_name": True}


class Workflow(BaseModel):
    """A workflow definition."""

    id: str
    name: str
    description: str = ""
    is_active: bool = Field(default=True, alias="isActive")
    metadata: WorkflowMetadata = WorkflowMetadata()
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")

    model_config = {"populate_by_name": True}


class WorkflowCreate(BaseModel):
    """Request to create a workflow."""

    id: str | None = None
    name: str = Field(min_length=1)
    description: str = ""
    is_active: bool = Field(default=True, alias="isActive")

    model_config = {"populate_by_name": True}


class WorkflowUpdate(BaseModel):
    """Partial update of a workflow."""

    name: str | None = None
    description: str | None = None
    is_active: bool | None = Field(default=None, alias="isActive")

    model_config = {"populate_by_name": True}


class WorkflowNode(BaseModel):
    """A node in a workflow graph."""

    id: str
    workflow_id: str = Field(alias="workflowId")
    type: NodeType
    name: str = ""
    position: Position = Position()
    config: dict[str, Any] = {}
    data: dict[str, Any] = {}

    model_config = {"populate_by_name": True}


class WorkflowNodeCreate(BaseModel):
    """Request to add a node to a workflow."""

    id: str | None = None
    type: NodeType
    name: str = ""
    position: Position = Position()
    config: dict[str, Any] = {}

    model_config = {"populate_by_name": True}


class WorkflowNodeUpdate(BaseModel):
    """Partial update of a node."""

    name: str | None = None
    position: Position | None = None
    config: dict[str, Any] | None = None
    data: dict[str, Any] | None = None


class WorkflowConnection(BaseModel):
    """A directed, optionally labeled edge between two nodes."""

    id: str
    workflow_id: str = Field(alias="workflowId")
    source_node_id: str = Field(alias="sourceNodeId")
    target_node_id: str = Field(alias="targetNodeId")
    label: str | None = None
    config: dict[str, Any] = {}

    model_config = {"populate_by_name": True}


class WorkflowConnectionCreate(BaseModel):
    """Request to connect two nodes."""

    id: str | None = None
    source_node_id: str = Field(alias="sourceNodeId")
    target_node_id: str = Field(alias="targetNodeId")
    label: str | None = None
    config: dict[str, Any] = {}

    model_config = {"populate_by_name": True}


class NodeState(BaseModel):
    """Run state of one node within an execution."""

    status: NodeRunStatus = NodeRunStatus.IDLE
    start_time: str | None = Field(default=None, alias="startTime")
    end_time: str | None = Field(default=None, alias="endTime")
    run_count: int = Field(default=0, alias="runCount")
    output: Any = None
    error: str | None = None

    model_config = {"populate_by_name": True}


class WorkflowExecution(BaseModel):
    """One run of a workflow."""

    id: str
    workflow_id: str = Field(alias="workflowId")
    status: ExecutionStatus = ExecutionStatus.IDLE
    input: Any = None
    output: Any = None
    node_states: dict[str, NodeState] = Field(default={}, alias="nodeStates")
    error: str | None = None
    started_at: str | None = Field(default=None, alias="startedAt")
    completed_at: str | None = Field(default=None, alias="completedAt")
    created_at: str = Field(alias="createdAt")

    model_config = {"populate_by_name": True}


class WorkflowGraph(BaseModel):
    """A workflow with its nodes and connections."""

    workflow: Workflow
    nodes: list[WorkflowNode] = []
    connections: list[WorkflowConnection] = []

    def get_node(self, node_id: str) -> WorkflowNode | None:
        """Find a node by id."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def outgoing(self, node_id: str) -> list[WorkflowConnection]:
        """Connections leaving a node, in insertion order."""
        return [c for c in self.connections if c.source_node_id == node_id]

    def start_nodes(self) -> list[WorkflowNode]:
        """All nodes of type start."""
        return [n for n in self.nodes if n.type == NodeType.START]
