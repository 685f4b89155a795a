from app.services.dispatch_service import DispatchReceipt, DispatchService
from app.services.dispatch_state import (
    DispatchState,
    InvalidTransitionError,
    can_transition,
    transition,
)
from app.services.errors import (
    AuthenticationError,
    ForbiddenError,
    InsufficientFundsError,
    InvalidInputError,
    LedgerUnavailableError,
    PersistenceError,
    RelayError,
    RemoteError,
    UnauthorizedError,
)
from app.services.rule_matcher import RuleMatcher, match_rule
from app.services.wallet_service import WalletService
from app.services.whatsapp_service import WhatsAppService, build_payload
