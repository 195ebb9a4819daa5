"""
Manager approval link tokens.

Each approval request issues a pair of signed links (approve and reject)
that share one token id. The id is stored on the trip; consuming either
link clears it, so the pair is single-use.
"""

import calendar
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from jose import JWTError, jwt

from tripshare.app.core.clock import Clock, utcnow
from tripshare.app.core.token_revocation import is_token_used, mark_token_used
from tripshare.app.models.trip_enums import ApprovalAction

logger = logging.getLogger(__name__)

TOKEN_TYPE = "trip_approval"

VALID = "valid"
EXPIRED = "expired"
INVALID = "invalid"


@dataclass(frozen=True)
class ApprovalLinks:
    jti: str
    approve_token: str
    reject_token: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenVerification:
    outcome: str
    trip_id: Optional[int] = None
    action: Optional[ApprovalAction] = None
    jti: Optional[str] = None
    approver: Optional[str] = None
    expires_at: Optional[datetime] = None
    replayed: bool = False

    @property
    def is_valid(self) -> bool:
        return self.outcome == VALID


def _timestamp(value: datetime) -> int:
    return calendar.timegm(value.timetuple())


class ApprovalTokenService:
    """Issues and verifies approval link tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256", redis_client=None, clock: Clock = utcnow):
        self.secret = secret
        self.algorithm = algorithm
        self.redis = redis_client
        self.clock = clock

    def issue(self, trip_id: int, approver_email: str, expires_at: datetime) -> ApprovalLinks:
        """
        Create the approve/reject link pair for a trip.

        Args:
            trip_id: Trip awaiting a decision
            approver_email: Who the links are sent to
            expires_at: Naive UTC expiry, matching the trip's approval deadline

        Returns:
            ApprovalLinks carrying both encoded tokens and their shared id
        """
        jti = uuid.uuid4().hex
        claims = {
            "typ": TOKEN_TYPE,
            "trip_id": trip_id,
            "sub": approver_email,
            "jti": jti,
            "iat": _timestamp(self.clock()),
            "exp": _timestamp(expires_at),
        }
        approve = jwt.encode({**claims, "action": ApprovalAction.APPROVE.value}, self.secret, algorithm=self.algorithm)
        reject = jwt.encode({**claims, "action": ApprovalAction.REJECT.value}, self.secret, algorithm=self.algorithm)
        return ApprovalLinks(jti=jti, approve_token=approve, reject_token=reject, expires_at=expires_at)

    async def verify(self, token: str) -> TokenVerification:
        """
        Check a token's signature, shape, expiry and replay status.

        Expiry is judged against the service clock rather than wall time.
        A token found in the used-token ledger is reported as invalid with
        ``replayed`` set.
        """
        try:
            payload = jwt.decode(
                token, self.secret, algorithms=[self.algorithm], options={"verify_exp": False}
            )
        except JWTError as e:
            logger.info("Approval token failed to decode: %s", e)
            return TokenVerification(outcome=INVALID)

        try:
            trip_id = int(payload["trip_id"])
            action = ApprovalAction(payload["action"])
            jti = str(payload["jti"])
            exp = int(payload["exp"])
        except (KeyError, TypeError, ValueError):
            return TokenVerification(outcome=INVALID)

        if payload.get("typ") != TOKEN_TYPE:
            return TokenVerification(outcome=INVALID, trip_id=trip_id)

        expires_at = datetime.fromtimestamp(exp, timezone.utc).replace(tzinfo=None)
        if exp <= _timestamp(self.clock()):
            return TokenVerification(outcome=EXPIRED, trip_id=trip_id, action=action, jti=jti, expires_at=expires_at)

        if self.redis is not None and await is_token_used(self.redis, jti):
            return TokenVerification(outcome=INVALID, trip_id=trip_id, action=action, jti=jti, replayed=True)

        return TokenVerification(
            outcome=VALID,
            trip_id=trip_id,
            action=action,
            jti=jti,
            approver=payload.get("sub"),
            expires_at=expires_at,
        )

    async def mark_used(self, verification: TokenVerification) -> None:
        """Add a consumed token id to the ledger for the rest of its lifetime."""
        if self.redis is None or not verification.jti:
            return
        ttl = 1
        if verification.expires_at is not None:
            ttl = int((verification.expires_at - self.clock()).total_seconds())
        await mark_token_used(self.redis, verification.jti, ttl)
