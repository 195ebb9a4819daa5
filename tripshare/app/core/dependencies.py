"""
FastAPI dependencies.

Authentication of the calling user and construction of the per-request
services. Every service receives the request's session, the shared Redis
client and the process settings.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from tripshare.app.core.approval_tokens import ApprovalTokenService
from tripshare.app.core.config import settings
from tripshare.app.core.jwt import decode_access_token
from tripshare.app.core.redis_client import get_redis
from tripshare.app.core.reliability import CircuitBreaker
from tripshare.app.db.session import get_db
from tripshare.app.domain.approval.approval_service import ApprovalService
from tripshare.app.domain.consolidation.constraints import ConsolidationConstraints
from tripshare.app.domain.consolidation.engine import ConsolidationEngine
from tripshare.app.domain.consolidation.suggestion_source import LLMSuggestionSource
from tripshare.app.domain.join_requests.join_request_service import JoinRequestService
from tripshare.app.domain.proposals.lifecycle import ProposalLifecycleService
from tripshare.app.models.user import User
from tripshare.app.services.notifier import MailAPINotifier, NotificationDispatcher
from tripshare.app.services.trip_store import TripStore

# HTTP Bearer security scheme
security = HTTPBearer()

# One breaker per process so failures accumulate across requests
suggestion_breaker = CircuitBreaker("suggestion-source", failure_threshold=3, reset_timeout=300)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    FastAPI dependency for JWT authentication.

    Validates the bearer token, then loads the user and verifies the account
    is still active.

    Raises:
        HTTPException: 401 if authentication fails, 403 for inactive accounts
    """
    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return user


def get_store(db: AsyncSession = Depends(get_db)) -> TripStore:
    return TripStore(db)


def get_token_service(redis_client=Depends(get_redis)) -> ApprovalTokenService:
    return ApprovalTokenService(
        secret=settings.approval_token_secret,
        algorithm=settings.algorithm,
        redis_client=redis_client,
    )


def get_notifier() -> MailAPINotifier:
    return MailAPINotifier.from_settings(settings)


def get_dispatcher(
    db: AsyncSession = Depends(get_db),
    notifier=Depends(get_notifier),
) -> NotificationDispatcher:
    return NotificationDispatcher(notifier, db)


def get_approval_service(
    store: TripStore = Depends(get_store),
    tokens: ApprovalTokenService = Depends(get_token_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ApprovalService:
    return ApprovalService(store, tokens, dispatcher, settings)


def get_consolidation_engine() -> ConsolidationEngine:
    return ConsolidationEngine(
        ConsolidationConstraints.from_settings(settings),
        LLMSuggestionSource.from_settings(settings, breaker=suggestion_breaker),
    )


def get_proposal_service(
    store: TripStore = Depends(get_store),
    engine: ConsolidationEngine = Depends(get_consolidation_engine),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ProposalLifecycleService:
    return ProposalLifecycleService(store, engine, dispatcher)


def get_join_request_service(
    store: TripStore = Depends(get_store),
    approval_service: ApprovalService = Depends(get_approval_service),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> JoinRequestService:
    return JoinRequestService(store, approval_service, dispatcher)
