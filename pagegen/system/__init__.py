from .artifacts import ArtifactSink, InMemoryArtifactSink, SaveResult, WorkspaceArtifactSink
from .conversation import ConversationHistory
from .session_store import InMemorySessionRepository, SessionRepository, SessionState, StageLimits
from .state import CodeArtifact, Stage, StagePhase, StageState

__all__ = [
    "ArtifactSink",
    "InMemoryArtifactSink",
    "WorkspaceArtifactSink",
    "SaveResult",
    "ConversationHistory",
    "SessionRepository",
    "InMemorySessionRepository",
    "SessionState",
    "StageLimits",
    "CodeArtifact",
    "Stage",
    "StagePhase",
    "StageState",
]
