"""
Verified-intent gate.

The signing exchange itself happens elsewhere: a user asks for an unstake or
a claim, an intent is registered, the user signs, and the signing provider
hands back a ``VerifiedAuthorization``. This module turns that one-time
authorization into a queued settlement request.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select
import structlog

from goldstake.core.config import settings, LedgerConfig
from goldstake.core.database import get_async_session
from goldstake.core.exceptions import (
    AuthorizationMismatchError,
    ClaimBelowMinimumFeeError,
    InsufficientFundsError,
    InsufficientRewardError,
    IntentNotFoundError,
    ValidationError,
)
from goldstake.models.authorization import AuthorizationIntent, IntentAction, IntentStatus
from goldstake.models.settlement import ClaimRequest, RequestStatus, UnstakeRequest
from goldstake.models.stake import StakeAccount
from goldstake.services.rewards import get_accumulated_reward, get_active_pool, snapshot_account
from goldstake.utils.amounts import truncate_amount
from goldstake.utils.clock import utc_now
from goldstake.utils.validation import XrplValidator

logger = structlog.get_logger(__name__)

CLAIM_ALL = Decimal("-1")


@dataclass
class VerifiedAuthorization:
    """A signature the provider has already verified."""
    session_id: str
    signer_account: str


@dataclass
class GateResult:
    action: IntentAction
    request_id: int
    account: str
    send_amount: Decimal


class VerifiedIntentGate:
    """Registers intents and converts verified ones into settlement requests."""

    def __init__(self):
        self.logger = logger.bind(service="authorization")

    async def register_intent(
        self,
        account: str,
        action: Union[IntentAction, str],
        amount: Union[Decimal, int, str, float],
        session_id: str,
        nonce: Optional[str] = None
    ) -> AuthorizationIntent:
        """
        Store a pending intent before the user is asked to sign.

        Unstake takes an explicit amount no larger than the staked principal.
        Claim only accepts ``-1`` (claim everything); the stored amount is the
        full accrued reward, the fee is taken when the intent is verified.

        Raises:
            ValidationError: Bad address, action or amount
            InsufficientFundsError: Unstake above the staked principal
            ClaimBelowMinimumFeeError: Accrued reward does not cover the claim fee
        """
        XrplValidator.validate_address(account)
        try:
            action = IntentAction(action)
        except ValueError:
            raise ValidationError("Invalid request", {"action": str(action)})
        amount = XrplValidator.validate_amount(amount)

        async with get_async_session() as session:
            if action == IntentAction.UNSTAKE:
                amount = truncate_amount(amount)
                if amount <= 0:
                    raise ValidationError("Unstake amount is invalid.", {"amount": str(amount)})
                stake = await session.get(StakeAccount, account)
                available = stake.staked_amount if stake else Decimal("0")
                if amount > available:
                    raise InsufficientFundsError(amount, available)
            else:
                if amount != CLAIM_ALL:
                    raise ValidationError("Only amount=-1 is allowed for claim.", {"amount": str(amount)})
                accrued = await get_accumulated_reward(session, account)
                if accrued < settings.claim_fee or truncate_amount(accrued - settings.claim_fee) <= 0:
                    raise ClaimBelowMinimumFeeError(accrued, settings.claim_fee)
                amount = accrued

            intent = AuthorizationIntent(
                xrpl_address=account,
                nonce=nonce or str(uuid.uuid4()),
                request_type=action,
                amount=amount,
                uuid=session_id,
                status=IntentStatus.PENDING,
            )
            session.add(intent)
            await session.flush()

        self.logger.info(
            "Authorization intent registered",
            account=account,
            action=action.value,
            amount=str(amount),
            session_id=session_id
        )
        return intent

    async def on_verified_authorization(self, authorization: VerifiedAuthorization) -> GateResult:
        """
        Consume a verified intent and queue its settlement request.

        The intent flip, the balance change and the request insert commit
        together or not at all.

        Raises:
            IntentNotFoundError: No pending intent for the session
            AuthorizationMismatchError: Signer is not the requester
            InsufficientFundsError: Unstake above the current principal
            InsufficientRewardError: Claim above the current accrued reward
            ClaimBelowMinimumFeeError: Claim does not cover the fee
        """
        signer = authorization.signer_account

        async with get_async_session() as session:
            result = await session.execute(
                select(AuthorizationIntent)
                .where(
                    AuthorizationIntent.uuid == authorization.session_id,
                    AuthorizationIntent.status == IntentStatus.PENDING,
                )
                .with_for_update()
            )
            intent = result.scalar_one_or_none()
            if intent is None:
                raise IntentNotFoundError(authorization.session_id)
            if intent.xrpl_address != signer:
                raise AuthorizationMismatchError(intent.xrpl_address, signer)

            now = utc_now()
            intent.status = IntentStatus.VERIFIED
            intent.verified_at = now
            intent.updated_at = now

            stake = await session.get(StakeAccount, signer, with_for_update=True)

            if intent.request_type == IntentAction.UNSTAKE:
                send_amount = truncate_amount(intent.amount)
                available = stake.staked_amount if stake else Decimal("0")
                if send_amount > available:
                    raise InsufficientFundsError(send_amount, available)

                # Settle accrual on the old principal before it shrinks
                await snapshot_account(session, stake, now, await get_active_pool(session))
                stake.staked_amount = truncate_amount(stake.staked_amount - send_amount)
                request = UnstakeRequest(
                    account=signer,
                    send_token=settings.stake_token,
                    send_amount=send_amount,
                    status=RequestStatus.PENDING,
                )

            else:
                requested = Decimal(intent.amount)
                accrued = await get_accumulated_reward(session, signer, now)
                if requested > accrued:
                    raise InsufficientRewardError(requested, accrued)
                if accrued < settings.claim_fee:
                    raise ClaimBelowMinimumFeeError(accrued, settings.claim_fee)
                send_amount = truncate_amount(requested - settings.claim_fee)
                if send_amount <= 0:
                    raise ClaimBelowMinimumFeeError(requested, settings.claim_fee)

                stake.pocket_reward = Decimal("0")
                stake.last_claim_at = now
                request = ClaimRequest(
                    account=signer,
                    send_token=LedgerConfig.reward_token(),
                    send_amount=send_amount,
                    status=RequestStatus.PENDING,
                )

            session.add(request)
            await session.flush()

        self.logger.info(
            "Verified intent queued",
            action=intent.request_type.value,
            request_id=request.id,
            account=signer,
            amount=str(send_amount)
        )
        return GateResult(
            action=intent.request_type,
            request_id=request.id,
            account=signer,
            send_amount=send_amount
        )
