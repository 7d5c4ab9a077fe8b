"""
Pydantic schemas shared by routers and the AI pipeline.
"""
from app.schemas.base import (  # noqa: F401
    PRIORITIES,
    UNKNOWN_CATEGORY,
    CamelModel,
    DescriptionExemplar,
    FieldFrequency,
    FrequencyTable,
    PatternSummary,
    TransactionRecord,
)
from app.schemas.auth import (  # noqa: F401
    AuthResponse,
    CurrentUser,
    LoginRequest,
    RegisterRequest,
    UserOut,
)
from app.schemas.family import (  # noqa: F401
    BulkImportRequest,
    BulkImportResponse,
    InvitationResponse,
    JoinRequest,
    JoinResponse,
    RemovalResponse,
    StatusResponse,
)
from app.schemas.ai import (  # noqa: F401
    AdviceResponse,
    AutofillRequest,
    AutofillSuggestion,
    ChartAdviceRequest,
    FinancialAdviceRequest,
    ParsedReceipt,
    ParsedTransactions,
    ProvidersResponse,
    ProviderStatus,
    ReceiptItem,
)
