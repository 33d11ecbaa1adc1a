"""
Outbox event consumers.

Every handler must tolerate redelivery: a failed event is requeued as a
whole, so handlers that already succeeded run again.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.models import OutboxEventModel, TaskModel
from ..enums import Role, TaskState
from ..governance.weight import GovernanceWeightService
from ..ledger import AttestationService, LedgerService
from ..sync.board import BoardAdapter
from ..sync.circuit_breaker import CircuitBreaker
from ..sync.reconciler import SyncReconciler
from ..teams.services import TeamService
from .notifications import NotificationSink
from .types import EventTypes

logger = structlog.get_logger()


@dataclass
class HandlerContext:
    """What handlers need besides the event itself."""

    db: Session
    sink: NotificationSink
    board: Optional[BoardAdapter] = None
    breaker: Optional[CircuitBreaker] = None

    async def close(self) -> None:
        """Release the sink's and board's HTTP clients."""
        await self.sink.close()
        if self.board is not None:
            await self.board.close()


Handler = Callable[[HandlerContext, OutboxEventModel], Awaitable[None]]


class HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def register(self, event_type: str) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self._handlers[event_type].append(handler)
            return handler

        return decorator

    def handlers_for(self, event_type: str) -> List[Handler]:
        return list(self._handlers.get(event_type, []))

    def event_types(self) -> List[str]:
        return sorted(self._handlers)


registry = HandlerRegistry()


def _task(ctx: HandlerContext, event: OutboxEventModel) -> Optional[TaskModel]:
    task_id = event.payload.get("task_id")
    if not task_id:
        return None
    return ctx.db.query(TaskModel).filter(TaskModel.id == task_id).first()


def _task_url(team_id: Optional[str], task_id: str) -> str:
    return f"{get_settings().app_url.rstrip('/')}/teams/{team_id}/tasks/{task_id}"


async def _notify_all(
    ctx: HandlerContext,
    user_ids: Iterable[str],
    event: OutboxEventModel,
    title: str,
    message: str,
    action_url: Optional[str] = None,
) -> int:
    delivered = 0
    for user_id in sorted(set(user_ids)):
        ok = await ctx.sink.notify(
            user_id,
            event.team_id,
            event.type,
            title,
            message,
            action_url=action_url,
            metadata=event.payload,
        )
        delivered += int(ok)
    return delivered


# Tasks


@registry.register(EventTypes.TASK_STATE_CHANGED)
async def sync_board(ctx: HandlerContext, event: OutboxEventModel) -> None:
    if ctx.board is None:
        return
    reconciler = SyncReconciler(ctx.db, ctx.board, breaker=ctx.breaker)
    await reconciler.sync_task_state(event.team_id, event.payload["task_id"])


@registry.register(EventTypes.TASK_STATE_CHANGED)
async def notify_reviewers_on_review(ctx: HandlerContext, event: OutboxEventModel) -> None:
    if event.payload.get("to_state") != TaskState.REVIEW.value:
        return
    task = _task(ctx, event)
    if task is None:
        return
    await _notify_all(
        ctx,
        task.reviewers or [],
        event,
        title="Review requested",
        message=f'"{task.title}" is ready for your review',
        action_url=_task_url(task.team_id, task.id),
    )


@registry.register(EventTypes.TASK_UNAUTHORIZED_MOVEMENT)
async def notify_unauthorized_movement(ctx: HandlerContext, event: OutboxEventModel) -> None:
    task = _task(ctx, event)
    if task is None:
        return
    stewards = TeamService(ctx.db).members_with_role(task.team_id, Role.STEWARD)
    await _notify_all(
        ctx,
        list(task.reviewers or []) + stewards,
        event,
        title="Unauthorized board movement",
        message=(
            f'"{task.title}" was moved to {event.payload.get("attempted_state")} on the board '
            f"without a valid transition. COOK issuance is blocked until a Steward clears it."
        ),
        action_url=_task_url(task.team_id, task.id),
    )


# Reviews


@registry.register(EventTypes.REVIEW_APPROVED)
async def finalize_and_issue(ctx: HandlerContext, event: OutboxEventModel) -> None:
    result = LedgerService(ctx.db).finalize_and_issue(event.team_id, event.payload["review_id"])
    if result is not None:
        logger.info(
            "cook_issuance_processed",
            task_id=result["task_id"],
            issued=len(result["issued"]),
            failed=sorted(result["failed"]),
        )


@registry.register(EventTypes.REVIEW_OBJECTED)
async def notify_contributors_of_objection(ctx: HandlerContext, event: OutboxEventModel) -> None:
    task = _task(ctx, event)
    if task is None:
        return
    await _notify_all(
        ctx,
        task.contributors or [],
        event,
        title="Objection raised",
        message=f'{event.payload.get("reviewer_id")} objected to the review of "{task.title}"',
        action_url=_task_url(task.team_id, task.id),
    )


# Ledger


@registry.register(EventTypes.COOK_ISSUED)
async def recompute_weight(ctx: HandlerContext, event: OutboxEventModel) -> None:
    GovernanceWeightService(ctx.db).recompute(event.team_id, event.payload["contributor_id"])


@registry.register(EventTypes.COOK_ISSUED)
async def create_attestation(ctx: HandlerContext, event: OutboxEventModel) -> None:
    AttestationService(ctx.db).create_for_entry(event.payload["ledger_entry_id"])


@registry.register(EventTypes.COOK_ISSUED)
async def notify_contributor_of_issuance(ctx: HandlerContext, event: OutboxEventModel) -> None:
    task = _task(ctx, event)
    title = task.title if task else event.payload.get("task_id")
    await _notify_all(
        ctx,
        [event.payload["contributor_id"]],
        event,
        title="COOK issued",
        message=(
            f'You received {event.payload.get("cook_value")} COOK '
            f'({event.payload.get("attribution")}) for "{title}"'
        ),
        action_url=_task_url(event.team_id, event.payload.get("task_id")),
    )


@registry.register(EventTypes.ATTESTATION_CREATED)
async def compute_attestation_hashes(ctx: HandlerContext, event: OutboxEventModel) -> None:
    AttestationService(ctx.db).compute_pending_hashes(event.payload["contributor_id"])


# Governance


@registry.register(EventTypes.PROPOSAL_CREATED)
async def notify_team_of_proposal(ctx: HandlerContext, event: OutboxEventModel) -> None:
    members = [m.user_id for m in TeamService(ctx.db).list_members(event.team_id)]
    await _notify_all(
        ctx,
        members,
        event,
        title="New governance proposal",
        message=f'{event.payload.get("proposed_by")} proposed "{event.payload.get("title")}"',
    )


@registry.register(EventTypes.VOTING_STARTED)
async def notify_team_of_voting(ctx: HandlerContext, event: OutboxEventModel) -> None:
    members = [m.user_id for m in TeamService(ctx.db).list_members(event.team_id)]
    await _notify_all(
        ctx,
        members,
        event,
        title="Voting opened",
        message=f'Voting "{event.payload.get("title")}" is open',
    )


@registry.register(EventTypes.COMMITTEE_SELECTED)
async def notify_committee_members(ctx: HandlerContext, event: OutboxEventModel) -> None:
    selected = event.payload.get("selected_members") or []
    if not selected:
        return
    name = event.payload.get("committee_name") or "a committee"
    await _notify_all(
        ctx,
        selected,
        event,
        title="Selected for committee",
        message=(
            f"You were selected by weighted lottery to serve on {name} "
            f"({len(selected)} seats)"
        ),
    )
