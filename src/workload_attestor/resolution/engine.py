"""ResolutionEngine — bounded-retry resolution of attestation requests.

A workload can ask for attestation before the control plane has caught
up with it: the container is running, but its pod (or the pod's status)
is not yet visible. The engine therefore retries a not-found result up to
``max_attempts`` times, waiting ``retry_interval`` seconds in between.
Every other failure ends the loop at once:

- an ambiguous match is a security condition and is never retried;
- a malformed or rejected credential will not get better by asking again.

One engine can serve many concurrent callers. Each call to
:meth:`ResolutionEngine.resolve` runs its own loop with its own attempt
record; the engine holds no per-request state. Within a call at most one
external request is outstanding at a time.

Example
-------
::

    engine = ResolutionEngine(ByDiscriminantScan(directory), max_attempts=10)
    selectors = engine.resolve(AttestationRequest(pid=4242))
"""
from __future__ import annotations

import functools
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Protocol

from workload_attestor.audit import AttestationAuditLogger
from workload_attestor.config import AttestorConfig, ResolutionMode
from workload_attestor.resolution.descriptor import WorkloadDescriptor
from workload_attestor.resolution.directory import PodDirectory, TokenReviewer
from workload_attestor.resolution.errors import (
    AmbiguousIdentityError,
    InvalidCredentialError,
    NotFoundExhaustedError,
    ResolutionCanceledError,
    ResolutionError,
    WorkloadNotFoundError,
)
from workload_attestor.resolution.resolver import (
    CandidatePredicate,
    ProcessMatcher,
    find_by_discriminant,
)
from workload_attestor.resolution.selectors import SelectorSet, build_selectors
from workload_attestor.resolution.token import TokenValidator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request and attempt records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AttestationRequest:
    """What to attest: a node-local process ID or credential metadata."""

    pid: Optional[int] = None
    credential_meta: Mapping[str, str] = field(default_factory=dict)

    @property
    def subject(self) -> str:
        """Audit-safe description of the request; never includes a token."""
        if self.pid is not None:
            return f"pid:{self.pid}"
        return "credential"


@dataclass
class ResolutionAttempt:
    """Progress of one resolve call."""

    number: int = 0
    elapsed: float = 0.0
    last_failure: str = ""


# ---------------------------------------------------------------------------
# Time source
# ---------------------------------------------------------------------------


class Clock(Protocol):
    def monotonic(self) -> float:
        ...

    def wait(self, seconds: float, cancel: threading.Event) -> bool:
        """Sleep for *seconds*; return ``True`` early if *cancel* is set."""
        ...


class SystemClock:
    """Wall-clock time source; waits are interruptible through the event."""

    def monotonic(self) -> float:
        return time.monotonic()

    def wait(self, seconds: float, cancel: threading.Event) -> bool:
        return cancel.wait(seconds)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class ResolutionStrategy(Protocol):
    """One resolution attempt: return the workload or raise ResolutionError."""

    name: str

    def resolve_once(self, request: AttestationRequest) -> WorkloadDescriptor:
        ...


class ByDiscriminantScan:
    """Resolve a process ID by scanning every pod visible to the directory.

    Parameters
    ----------
    directory:
        Pod directory to list from.
    proc_root:
        Host procfs mount used to map the process to its container.
    predicate_factory:
        Builds the candidacy predicate for a process ID. Defaults to
        :class:`~workload_attestor.resolution.resolver.ProcessMatcher`.
    """

    name = "process-lookup"

    def __init__(
        self,
        directory: PodDirectory,
        proc_root: str = "/proc",
        predicate_factory: Optional[Callable[[int], CandidatePredicate]] = None,
    ) -> None:
        self._directory = directory
        self._predicate_factory = predicate_factory or functools.partial(
            _process_matcher, proc_root=proc_root
        )

    def resolve_once(self, request: AttestationRequest) -> WorkloadDescriptor:
        if request.pid is None or request.pid <= 0:
            raise InvalidCredentialError(f"process lookup needs a positive pid, got {request.pid!r}")
        predicate = self._predicate_factory(request.pid)
        result = find_by_discriminant(self._directory.list_pods(), predicate)
        if result.ambiguous:
            raise AmbiguousIdentityError(result.candidates)
        if result.descriptor is None:
            raise WorkloadNotFoundError(f"no pod found for pid {request.pid}")
        return result.descriptor


def _process_matcher(pid: int, proc_root: str) -> CandidatePredicate:
    return ProcessMatcher(pid, proc_root=proc_root)


class ByCredential:
    """Resolve a bearer token taken from the request's credential metadata.

    Parameters
    ----------
    validator:
        Performs review, claim extraction and pod lookup.
    token_meta_key:
        Metadata key holding the token.
    fallback_token:
        Token used when the request carries none. Only set this when the
        deployment explicitly allows it.
    """

    name = "credential-lookup"

    def __init__(
        self,
        validator: TokenValidator,
        token_meta_key: str = "token",
        fallback_token: Optional[str] = None,
    ) -> None:
        self._validator = validator
        self._token_meta_key = token_meta_key
        self._fallback_token = fallback_token

    def token_for(self, request: AttestationRequest) -> str:
        token = request.credential_meta.get(self._token_meta_key, "")
        if not token.strip() and self._fallback_token:
            logger.warning("Request carries no credential; using configured fallback token")
            return self._fallback_token
        return token

    def resolve_once(self, request: AttestationRequest) -> WorkloadDescriptor:
        return self._validator.validate(self.token_for(request))


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class ResolutionEngine:
    """Retry loop around a :class:`ResolutionStrategy`.

    Parameters
    ----------
    strategy:
        Performs a single resolution attempt.
    max_attempts:
        Attempts before giving up (>= 1).
    retry_interval:
        Seconds to wait between attempts (> 0).
    clock:
        Time source; defaults to :class:`SystemClock`.
    audit:
        Optional audit logger for outcomes and security events.
    """

    def __init__(
        self,
        strategy: ResolutionStrategy,
        max_attempts: int = 60,
        retry_interval: float = 0.5,
        clock: Optional[Clock] = None,
        audit: Optional[AttestationAuditLogger] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if retry_interval <= 0:
            raise ValueError(f"retry_interval must be > 0, got {retry_interval}")
        self.strategy = strategy
        self.max_attempts = max_attempts
        self.retry_interval = retry_interval
        self._clock: Clock = clock or SystemClock()
        self._audit = audit

    @classmethod
    def from_config(
        cls,
        config: AttestorConfig,
        directory: PodDirectory,
        reviewer: Optional[TokenReviewer] = None,
        clock: Optional[Clock] = None,
        audit: Optional[AttestationAuditLogger] = None,
    ) -> "ResolutionEngine":
        """Build an engine whose strategy matches ``config.mode``."""
        strategy: ResolutionStrategy
        if config.mode == ResolutionMode.CREDENTIAL_LOOKUP:
            if reviewer is None:
                raise ValueError("credential-lookup mode requires a token reviewer")
            validator = TokenValidator(reviewer, directory, pod_name_claim=config.pod_name_claim)
            strategy = ByCredential(
                validator,
                token_meta_key=config.token_meta_key,
                fallback_token=config.effective_fallback_token,
            )
        else:
            strategy = ByDiscriminantScan(directory, proc_root=config.proc_root)
        return cls(
            strategy,
            max_attempts=config.max_attempts,
            retry_interval=config.retry_interval,
            clock=clock,
            audit=audit,
        )

    def resolve(
        self,
        request: AttestationRequest,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> SelectorSet:
        """Resolve *request* to a non-empty :class:`SelectorSet`.

        Parameters
        ----------
        request:
            The attestation request.
        cancel:
            Set by the caller to abort. Checked before every attempt and
            interrupts the wait between attempts.
        timeout:
            Optional bound on total elapsed seconds.

        Raises
        ------
        NotFoundExhaustedError
            No match after ``max_attempts`` attempts.
        ResolutionCanceledError
            *cancel* was set or *timeout* elapsed.
        ResolutionError
            Any other (fatal) failure from the strategy.
        """
        cancel = cancel or threading.Event()
        start = self._clock.monotonic()
        deadline = start + timeout if timeout is not None else None
        attempt = ResolutionAttempt()

        while True:
            if cancel.is_set():
                raise self._terminal(request, ResolutionCanceledError(attempt.number))
            attempt.number += 1

            try:
                descriptor = self.strategy.resolve_once(request)
            except WorkloadNotFoundError as exc:
                attempt.last_failure = exc.reason
                attempt.elapsed = self._clock.monotonic() - start
                if cancel.is_set():
                    raise self._terminal(request, ResolutionCanceledError(attempt.number)) from exc
                if attempt.number >= self.max_attempts:
                    logger.warning(
                        "Workload not found after %d attempt(s); giving up: %s",
                        attempt.number,
                        exc.reason,
                    )
                    raise self._terminal(
                        request, NotFoundExhaustedError(attempt.number, exc.reason)
                    ) from exc
                logger.warning(
                    "Workload not found (attempt %d/%d, %.2fs elapsed): %s; retrying in %.2fs",
                    attempt.number,
                    self.max_attempts,
                    attempt.elapsed,
                    exc.reason,
                    self.retry_interval,
                )
                try:
                    self._wait_between_attempts(attempt, cancel, deadline)
                except ResolutionCanceledError as canceled:
                    raise self._terminal(request, canceled) from exc
                continue
            except AmbiguousIdentityError as exc:
                logger.warning(
                    "Ambiguous identity for %s: %s", request.subject, ", ".join(exc.candidates)
                )
                if self._audit is not None:
                    self._audit.log_ambiguous(request.subject, exc.candidates, attempt.number)
                raise
            except ResolutionError as exc:
                logger.info("Attestation of %s failed (%s): %s", request.subject, exc.kind.value, exc)
                if self._audit is not None:
                    self._audit.log_rejected(request.subject, exc.kind.value, exc.reason)
                raise

            selectors = build_selectors(descriptor)
            logger.debug(
                "Resolved %s to %s after %d attempt(s)",
                request.subject,
                descriptor.qualified_name,
                attempt.number,
            )
            if self._audit is not None:
                self._audit.log_attested(
                    request.subject, descriptor.qualified_name, len(selectors), attempt.number
                )
            return selectors

    def _terminal(self, request: AttestationRequest, exc: ResolutionError) -> ResolutionError:
        """Audit a give-up outcome and return *exc* for raising."""
        logger.info("Attestation of %s ended (%s): %s", request.subject, exc.kind.value, exc)
        if self._audit is not None:
            self._audit.log_rejected(request.subject, exc.kind.value, exc.reason)
        return exc

    def _wait_between_attempts(
        self,
        attempt: ResolutionAttempt,
        cancel: threading.Event,
        deadline: Optional[float],
    ) -> None:
        wait_for = self.retry_interval
        timed_out = False
        if deadline is not None:
            remaining = deadline - self._clock.monotonic()
            if remaining <= wait_for:
                wait_for = max(remaining, 0.0)
                timed_out = True
        if self._clock.wait(wait_for, cancel):
            raise ResolutionCanceledError(attempt.number)
        if timed_out:
            raise ResolutionCanceledError(attempt.number, reason="timeout elapsed")
