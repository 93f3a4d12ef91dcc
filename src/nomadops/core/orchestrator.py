"""Deployment orchestration.

The orchestrator runs one deployment attempt through a fixed sequence of
states::

    INIT -> BUILDING -> REWRITING -> VALIDATING -> SUBMITTING -> POLLING
         -> HEALTHY | FAILED

Each stage only starts when the previous one succeeded. The first error
ends the attempt as FAILED with that error's kind and message. Polling
is the only loop: it runs on a fixed interval against a hard deadline
and never retries a stage.

A timeout or cancellation ends the attempt but leaves the cluster as it
is; the scheduler stays the source of truth for the rollout.
"""

from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from nomadops.core.builder import ImageBackend, build_image
from nomadops.core.cluster import ClusterClient
from nomadops.core.config import DeployConfig
from nomadops.core.errors import (
    Cancelled,
    DeployError,
    DeploymentFailed,
    HealthTimeout,
    RejectedSpec,
    TransportError,
)
from nomadops.core.logging import get_logger
from nomadops.core.models import (
    AttemptState,
    BuildRequest,
    DeploymentAttempt,
    DeploymentHandle,
    FailureReason,
    JobTemplate,
    RolloutStatus,
)
from nomadops.core.rewriter import rewrite

log = get_logger(__name__)


def _check_cancel(cancel: threading.Event) -> None:
    if cancel.is_set():
        raise Cancelled("Deployment cancelled by caller")


def wait_for_rollout(
    cluster: ClusterClient,
    handle: DeploymentHandle,
    config: DeployConfig,
    *,
    cancel: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] | None = None,
    on_status: Callable[[RolloutStatus], None] | None = None,
    logger=None,
) -> RolloutStatus:
    """
    Block until a submitted job is healthy.

    Polls ``cluster.status`` every ``config.poll_interval`` seconds.
    Up to ``config.max_poll_errors - 1`` consecutive transport errors are
    tolerated and reported as UNKNOWN. Nothing is done to the cluster when
    this function gives up.

    Args:
        cluster: Cluster client to poll.
        handle: Handle returned by ``cluster.run``.
        config: Interval, deadline and error tolerance.
        cancel: Event checked before every poll.
        clock: Monotonic clock used for the deadline.
        sleep: Wait function; defaults to waiting on ``cancel``.
        on_status: Called with every polled status.
        logger: Bound logger; defaults to the module logger.

    Returns:
        RolloutStatus.HEALTHY.

    Raises:
        DeploymentFailed: The cluster reported the rollout as failed.
        HealthTimeout: The deadline passed first.
        Cancelled: The cancel event was set.
        TransportError: Too many consecutive transport errors.
    """
    cancel = cancel or threading.Event()
    logger = logger or log
    deadline = clock() + config.health_timeout
    consecutive_errors = 0

    while True:
        _check_cancel(cancel)
        try:
            status = cluster.status(handle)
            consecutive_errors = 0
        except TransportError as exc:
            consecutive_errors += 1
            logger.warning(
                "poll.transport_error",
                error=str(exc),
                consecutive=consecutive_errors,
            )
            if consecutive_errors >= config.max_poll_errors:
                raise
            status = RolloutStatus.UNKNOWN

        logger.debug("poll", job=handle.job_id, status=status.value)
        if on_status is not None:
            on_status(status)

        if status == RolloutStatus.HEALTHY:
            return status
        if status == RolloutStatus.FAILED:
            raise DeploymentFailed(
                f"Rollout of job {handle.job_id} failed",
                details={"evaluation": handle.evaluation_id},
            )

        remaining = deadline - clock()
        if remaining <= 0:
            raise HealthTimeout(
                f"Job {handle.job_id} not healthy after {config.health_timeout:g}s",
                details={"last_status": status.value},
            )
        if sleep is not None:
            sleep(min(config.poll_interval, remaining))
        elif cancel.wait(min(config.poll_interval, remaining)):
            _check_cancel(cancel)


StatusCallback = Callable[[DeploymentAttempt, RolloutStatus], None]
TransitionCallback = Callable[[DeploymentAttempt, AttemptState], None]


class Orchestrator:
    """Sequences build, rewrite, validate, run and health polling."""

    def __init__(
        self,
        cluster: ClusterClient,
        config: DeployConfig,
        *,
        builder: ImageBackend | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
        on_status: StatusCallback | None = None,
        on_transition: TransitionCallback | None = None,
    ):
        """
        Create an orchestrator.

        Args:
            cluster: Cluster client used for validate/plan/run/status.
            config: Polling and failure policy.
            builder: Image backend; required unless deployments pass an
                     existing image reference.
            clock: Monotonic clock used for the polling deadline.
            sleep: Wait function between polls. Defaults to waiting on the
                   cancel event so an abort wakes the loop immediately.
            on_status: Called after every status poll.
            on_transition: Called after every state change.
        """
        self.cluster = cluster
        self.config = config
        self.builder = builder
        self.clock = clock
        self.sleep = sleep
        self.on_status = on_status
        self.on_transition = on_transition

    def deploy(
        self,
        template: JobTemplate,
        *,
        environment: str,
        build_request: BuildRequest | None = None,
        image_reference: str | None = None,
        image_name: str | None = None,
        cancel: threading.Event | None = None,
        dry_run: bool = False,
    ) -> DeploymentAttempt:
        """
        Run one deployment attempt.

        Exactly one of ``build_request`` and ``image_reference`` must be
        given. With ``image_reference`` the build stage is skipped and the
        existing image is deployed.

        Args:
            template: Job template to rewrite and submit.
            environment: Target environment name (for logging and reports).
            build_request: Image to build before deploying.
            image_reference: Already published image to deploy.
            image_name: Repository whose reference is replaced in the
                        template; defaults to the build request's image.
            cancel: Event that aborts the attempt between stages and polls.
            dry_run: Stop after validation and planning; nothing is submitted.

        Returns:
            The finished DeploymentAttempt. Failures are reported through
            ``attempt.failure``, not raised.
        """
        if (build_request is None) == (image_reference is None):
            raise ValueError("Pass exactly one of build_request or image_reference")

        cancel = cancel or threading.Event()
        attempt = DeploymentAttempt(
            attempt_id=uuid.uuid4().hex[:12],
            environment=environment,
            dry_run=dry_run,
        )
        alog = log.bind(attempt_id=attempt.attempt_id, environment=environment)
        alog.info("attempt.started", dry_run=dry_run)

        try:
            self._transition(attempt, AttemptState.BUILDING, alog)
            _check_cancel(cancel)
            if build_request is not None:
                if self.builder is None:
                    raise ValueError("An image backend is required to build")
                attempt.build = build_image(self.builder, build_request)
                image_reference = attempt.build.image_reference
                image_name = image_name or build_request.image_name
            else:
                alog.info("build.skipped", image_reference=image_reference)

            self._transition(attempt, AttemptState.REWRITING, alog)
            _check_cancel(cancel)
            attempt.job_spec = rewrite(template, image_reference, image_name=image_name)

            self._transition(attempt, AttemptState.VALIDATING, alog)
            _check_cancel(cancel)
            validation = self.cluster.validate(attempt.job_spec)
            for warning in validation.warnings:
                alog.warning("validate.warning", job=validation.job_id, warning=warning)

            if self.config.plan_first or dry_run:
                attempt.plan = self.cluster.plan(attempt.job_spec)
                alog.info(
                    "plan.finished",
                    job=attempt.plan.job_id,
                    diff=attempt.plan.diff_type,
                    changes=attempt.plan.changes,
                )
                if attempt.plan.failed_allocations:
                    raise RejectedSpec(
                        "Plan could not place task group(s): "
                        + ", ".join(attempt.plan.failed_allocations),
                        details={"job": attempt.plan.job_id},
                    )

            if dry_run:
                alog.info("attempt.dry_run_finished", state=attempt.state.value)
                return attempt

            self._transition(attempt, AttemptState.SUBMITTING, alog)
            _check_cancel(cancel)
            attempt.handle = self.cluster.run(attempt.job_spec)
            alog.info(
                "run.submitted",
                job=attempt.handle.job_id,
                evaluation=attempt.handle.evaluation_id,
                previous_version=attempt.handle.previous_version,
            )

            self._transition(attempt, AttemptState.POLLING, alog)
            self._poll(attempt, attempt.handle, cancel, alog)
            self._transition(attempt, AttemptState.HEALTHY, alog)
        except DeployError as exc:
            self._fail(attempt, exc, alog)
        except Exception as exc:
            attempt.failure = FailureReason(kind=type(exc).__name__, message=str(exc))
            self._transition(attempt, AttemptState.FAILED, alog)
            raise

        alog.info(
            "attempt.finished",
            state=attempt.state.value,
            failure=str(attempt.failure) if attempt.failure else None,
        )
        return attempt

    def _transition(self, attempt: DeploymentAttempt, state: AttemptState, alog) -> None:
        previous = attempt.state
        attempt.state = state
        attempt.transitions.append((state, datetime.now(timezone.utc)))
        alog.info("transition", from_state=previous.value, to_state=state.value)
        if self.on_transition is not None:
            self.on_transition(attempt, state)

    def _poll(
        self,
        attempt: DeploymentAttempt,
        handle: DeploymentHandle,
        cancel: threading.Event,
        alog,
    ) -> None:
        """Poll status until HEALTHY, FAILED, the deadline or cancellation."""
        callback = self.on_status
        on_status = (lambda status: callback(attempt, status)) if callback else None
        wait_for_rollout(
            self.cluster,
            handle,
            self.config,
            cancel=cancel,
            clock=self.clock,
            sleep=self.sleep,
            on_status=on_status,
            logger=alog,
        )

    def _fail(self, attempt: DeploymentAttempt, exc: DeployError, alog) -> None:
        attempt.failure = FailureReason(kind=exc.kind, message=str(exc))
        alog.error("attempt.failed", kind=exc.kind, error=str(exc), state=attempt.state.value)
        self._transition(attempt, AttemptState.FAILED, alog)

        handle = attempt.handle
        if not (self.config.revert_on_failure and isinstance(exc, DeploymentFailed)):
            return
        if handle is None or handle.previous_version is None:
            alog.warning("revert.skipped", reason="no previous job version")
            return
        try:
            self.cluster.revert(handle)
        except DeployError as revert_exc:
            alog.error("revert.failed", kind=revert_exc.kind, error=str(revert_exc))
            return
        attempt.reverted = True
        alog.info("revert.submitted", job=handle.job_id, version=handle.previous_version)
