"""Human-in-the-loop checkpoint gate.

A checkpoint pauses a production phase until a human approves or rejects
it. Each pending checkpoint has its own timer; if nobody answers before
the timeout the checkpoint is auto-approved. Every checkpoint resolves
exactly once, by whichever of approve, reject, timeout or dispose comes
first.

Once ``max_checkpoints`` checkpoints have been created, further requests
are approved immediately without pausing.

Example:
    gate = CheckpointGate(max_checkpoints=3)

    # In the pipeline
    approval = await gate.create_checkpoint("visuals", timeout=600)
    if not approval.approved:
        revise(approval.change_request)

    # From the UI
    gate.approve_checkpoint(checkpoint_id)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30 * 60.0  # seconds
DEFAULT_MAX_CHECKPOINTS = 3


class CheckpointStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ResolvedBy(str, Enum):
    MANUAL = "manual"
    TIMEOUT = "timeout"
    DISPOSE = "dispose"


@dataclass
class CheckpointApproval:
    """What a paused phase receives when its checkpoint resolves."""

    approved: bool
    change_request: str | None = None


@dataclass
class Checkpoint:
    """A checkpoint and its resolution. Kept after resolution for auditing."""

    checkpoint_id: str
    phase: str
    timeout: float
    status: CheckpointStatus = CheckpointStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)
    approved_at: datetime | None = None
    change_request: str | None = None
    resolved_by: ResolvedBy | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_pending(self) -> bool:
        return self.status == CheckpointStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "checkpoint_id": self.checkpoint_id,
            "phase": self.phase,
            "timeout": self.timeout,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "change_request": self.change_request,
            "resolved_by": self.resolved_by.value if self.resolved_by else None,
            "metadata": self.metadata,
        }


# Fields update_checkpoint may not touch; resolution goes through approve/reject.
_PROTECTED_FIELDS = frozenset({"checkpoint_id", "status", "resolved_by", "created_at"})


class CheckpointGate:
    """Create and resolve checkpoints on the running event loop.

    Args:
        max_checkpoints: Total checkpoints created before further requests
            are auto-approved without pausing.
        default_timeout: Seconds before a pending checkpoint auto-approves.
        on_checkpoint_created: Called with each new pending Checkpoint.
    """

    def __init__(
        self,
        max_checkpoints: int = DEFAULT_MAX_CHECKPOINTS,
        default_timeout: float = DEFAULT_TIMEOUT,
        on_checkpoint_created: Callable[[Checkpoint], Any] | None = None,
    ):
        self.max_checkpoints = max_checkpoints
        self.default_timeout = default_timeout
        self.on_checkpoint_created = on_checkpoint_created
        self._checkpoints: dict[str, Checkpoint] = {}
        self._waiters: dict[str, asyncio.Future[CheckpointApproval]] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    async def create_checkpoint(self, phase: str, timeout: float | None = None) -> CheckpointApproval:
        """Pause until the checkpoint for ``phase`` resolves.

        Args:
            phase: Production phase being gated.
            timeout: Seconds before auto-approval. Defaults to ``default_timeout``.

        Returns:
            CheckpointApproval. Approved immediately if the cap is reached.
        """
        if len(self._checkpoints) >= self.max_checkpoints:
            logger.warning(
                f"Max checkpoint count ({self.max_checkpoints}) reached, "
                f'skipping checkpoint for phase "{phase}"'
            )
            return CheckpointApproval(approved=True)

        timeout = self.default_timeout if timeout is None else timeout
        checkpoint = Checkpoint(checkpoint_id=self._new_id(phase), phase=phase, timeout=timeout)
        checkpoint_id = checkpoint.checkpoint_id

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[CheckpointApproval] = loop.create_future()
        self._checkpoints[checkpoint_id] = checkpoint
        self._waiters[checkpoint_id] = waiter
        self._timers[checkpoint_id] = loop.call_later(timeout, self._on_timeout, checkpoint_id)
        logger.info(f"Checkpoint created: {checkpoint_id} (phase: {phase})")

        if self.on_checkpoint_created is not None:
            self.on_checkpoint_created(checkpoint)

        # A cancelled caller cancels the waiter too; the timer or dispose still
        # resolves the record.
        return await waiter

    def approve_checkpoint(self, checkpoint_id: str) -> None:
        """Approve a pending checkpoint. Unknown or resolved ids are ignored."""
        if self._resolve(checkpoint_id, CheckpointApproval(approved=True), ResolvedBy.MANUAL):
            logger.info(f"Checkpoint approved: {checkpoint_id}")

    def reject_checkpoint(self, checkpoint_id: str, change_request: str | None = None) -> None:
        """Reject a pending checkpoint, optionally asking for changes."""
        approval = CheckpointApproval(approved=False, change_request=change_request)
        if self._resolve(checkpoint_id, approval, ResolvedBy.MANUAL):
            suffix = f" (change: {change_request})" if change_request else ""
            logger.info(f"Checkpoint rejected: {checkpoint_id}{suffix}")

    def update_checkpoint(self, checkpoint_id: str, patch: Mapping[str, Any]) -> None:
        """Apply ``patch`` to a checkpoint's descriptive fields.

        Raises:
            ValueError: If the patch names a protected or unknown field.
        """
        checkpoint = self._checkpoints.get(checkpoint_id)
        if checkpoint is None:
            logger.warning(f"Checkpoint not found: {checkpoint_id}")
            return

        for key, value in patch.items():
            if key in _PROTECTED_FIELDS or not hasattr(checkpoint, key):
                raise ValueError(f"Cannot update checkpoint field: {key}")
            setattr(checkpoint, key, value)

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint | None:
        return self._checkpoints.get(checkpoint_id)

    def get_all_checkpoints(self) -> list[Checkpoint]:
        """All checkpoints in creation order."""
        return list(self._checkpoints.values())

    def get_checkpoint_count(self) -> int:
        return len(self._checkpoints)

    def has_pending_checkpoints(self) -> bool:
        return bool(self._waiters)

    def dispose(self) -> None:
        """Cancel all timers and auto-approve every pending checkpoint."""
        for checkpoint_id in list(self._waiters):
            logger.debug(f"Disposing pending checkpoint: {checkpoint_id}")
            self._resolve(checkpoint_id, CheckpointApproval(approved=True), ResolvedBy.DISPOSE)
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def _new_id(self, phase: str) -> str:
        base = f"cp_{phase}_{int(time.time() * 1000)}"
        checkpoint_id = base
        n = 1
        while checkpoint_id in self._checkpoints:
            checkpoint_id = f"{base}_{n}"
            n += 1
        return checkpoint_id

    def _on_timeout(self, checkpoint_id: str) -> None:
        self._timers.pop(checkpoint_id, None)
        checkpoint = self._checkpoints.get(checkpoint_id)
        if checkpoint_id in self._waiters and checkpoint is not None:
            logger.warning(f"Checkpoint {checkpoint_id} timed out after {checkpoint.timeout}s, auto-approving")
        self._resolve(checkpoint_id, CheckpointApproval(approved=True), ResolvedBy.TIMEOUT)

    def _cancel_timer(self, checkpoint_id: str) -> None:
        timer = self._timers.pop(checkpoint_id, None)
        if timer is not None:
            timer.cancel()

    def _resolve(self, checkpoint_id: str, approval: CheckpointApproval, resolved_by: ResolvedBy) -> bool:
        """Resolve a pending checkpoint once. Returns False if it was not pending."""
        waiter = self._waiters.pop(checkpoint_id, None)
        if waiter is None:
            logger.warning(f"No pending checkpoint found: {checkpoint_id}")
            return False

        self._cancel_timer(checkpoint_id)

        checkpoint = self._checkpoints[checkpoint_id]
        checkpoint.resolved_by = resolved_by
        if approval.approved:
            checkpoint.status = CheckpointStatus.APPROVED
            checkpoint.approved_at = datetime.now()
        else:
            checkpoint.status = CheckpointStatus.REJECTED
            checkpoint.change_request = approval.change_request

        if not waiter.done():
            waiter.set_result(approval)
        return True
