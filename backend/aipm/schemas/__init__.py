from .auth import Token, LoginRequest, UserRead, UserCreate
from .projects import (
    ProjectCreate,
    ProjectRead,
    ProjectUpdate,
    ProjectListItem,
    ProjectDetail,
    ProjectMemberCreate,
    ProjectMemberUpdate,
    ProjectMemberRead,
    StepProgressRead,
    ProjectActivityRead,
)
from .documents import (
    DocumentCreate,
    DocumentPatch,
    DocumentRead,
    DocumentVersionRead,
    ApprovalHistoryRead,
    RejectRequest,
    GenerateDocumentRequest,
    PendingApprovalRead,
    ConflictItem,
    ConflictAnalysis,
    ConflictAnalysisRequest,
    ConflictAnalysisRead,
)
from .chat import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ConversationRead,
    ConversationHistoryRead,
)
