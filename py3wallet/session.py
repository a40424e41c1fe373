"""Authentication and session lock state machine.

The session is LOCKED until a biometric check or PIN succeeds, or
immediately UNLOCKED when no gate (biometrics or PIN) is configured. An
unlocked session locks again after ``session_timeout`` seconds without
activity, on logout, or on backgrounding when ``lock_on_background`` is set.

Expiry is tracked as a monotonic deadline. A single event-loop timer
handle locks the session when the deadline passes; ``require_unlocked``
also checks the deadline, so expiry holds without a running loop.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable

    from .storage import SecureStorage

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT = 300.0
DEFAULT_BIOMETRIC_TIMEOUT = 60.0
DEFAULT_PIN_LOCKOUT = 300.0
UNLOCK_PROMPT = "Unlock your wallet"


class SessionState(Enum):
    LOCKED = "locked"
    AUTHENTICATING = "authenticating"
    UNLOCKED = "unlocked"


class TransitionReason(Enum):
    """Why the session changed state."""

    NO_GATE = "no_gate"
    REQUEST = "request"
    BIOMETRIC = "biometric"
    PIN = "pin"
    AUTH_FAILED = "auth_failed"
    PIN_ATTEMPTS_EXCEEDED = "pin_attempts_exceeded"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    LOGOUT = "logout"
    BACKGROUND = "background"


@dataclass(frozen=True, slots=True)
class SessionEvent:
    """A state transition delivered to observers."""

    state: SessionState
    previous: SessionState
    reason: TransitionReason


class SessionError(Exception):
    """Base error for operations gated behind an unlocked session."""


class SessionExpired(SessionError):
    """The session locked itself after the inactivity timeout."""


class NotAuthenticated(SessionError):
    """The session is not unlocked."""


class BiometricRequired(SessionError):
    """The secret is biometric-protected but the session was unlocked another way."""


class BiometricAuthenticator(Protocol):
    """Platform biometric prompt."""

    def is_available(self) -> bool: ...

    async def authenticate(self, reason: str) -> bool: ...


class NoBiometrics:
    """Authenticator for hosts without biometric hardware."""

    def is_available(self) -> bool:
        return False

    async def authenticate(self, reason: str) -> bool:
        return False


class AuthenticationManager:
    """Session state machine gating access to secrets."""

    def __init__(
        self,
        storage: SecureStorage,
        biometrics: BiometricAuthenticator | None = None,
        *,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT,
        biometric_enabled: bool = True,
        max_pin_attempts: int = 0,
        biometric_timeout: float = DEFAULT_BIOMETRIC_TIMEOUT,
        lock_on_background: bool = False,
        pin_lockout: float = DEFAULT_PIN_LOCKOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if session_timeout <= 0:
            raise ValueError(f"session_timeout must be positive, got {session_timeout}")
        if max_pin_attempts < 0:
            raise ValueError(f"max_pin_attempts must not be negative, got {max_pin_attempts}")
        if pin_lockout <= 0:
            raise ValueError(f"pin_lockout must be positive, got {pin_lockout}")

        self._storage = storage
        self._biometrics: BiometricAuthenticator = biometrics or NoBiometrics()
        self._session_timeout = session_timeout
        self._biometric_enabled = biometric_enabled
        self._max_pin_attempts = max_pin_attempts
        self._biometric_timeout = biometric_timeout
        self._lock_on_background = lock_on_background
        self._pin_lockout = pin_lockout
        self._clock = clock

        self._lock = threading.RLock()
        self._state = SessionState.LOCKED
        self._expires_at: float | None = None
        self._expired = False
        self._backgrounded = False
        self._failed_pin_attempts = 0
        self._pin_locked_until: float | None = None
        self._unlock_reason: TransitionReason | None = None
        # bumped on every state change; stale PIN results compare against it
        self._transitions = 0
        self._timer: asyncio.TimerHandle | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observers: list[Callable[[SessionEvent], None]] = []

    # Introspection

    @property
    def state(self) -> SessionState:
        with self._lock:
            self._check_expiry()
            return self._state

    @property
    def session_timeout(self) -> float:
        return self._session_timeout

    @property
    def expires_in(self) -> float | None:
        """Seconds until the session locks, or None when not counting down."""
        with self._lock:
            self._check_expiry()
            if self._state is not SessionState.UNLOCKED or self._expires_at is None:
                return None
            return max(0.0, self._expires_at - self._clock())

    @property
    def biometric_enabled(self) -> bool:
        return self._biometric_enabled

    @property
    def backgrounded(self) -> bool:
        return self._backgrounded

    @property
    def unlocked_with_biometrics(self) -> bool:
        with self._lock:
            self._check_expiry()
            return (
                self._state is SessionState.UNLOCKED
                and self._unlock_reason is TransitionReason.BIOMETRIC
            )

    @property
    def pin_lockout_remaining(self) -> float | None:
        """Seconds until PIN entry is accepted again, or None when not locked out."""
        with self._lock:
            if self._pin_locked_until is None:
                return None
            remaining = self._pin_locked_until - self._clock()
            if remaining <= 0:
                self._pin_locked_until = None
                return None
            return remaining

    def _biometrics_usable(self) -> bool:
        return self._biometric_enabled and self._biometrics.is_available()

    @property
    def biometrics_usable(self) -> bool:
        """True if biometric unlock is enabled and the authenticator is available."""
        return self._biometrics_usable()

    @property
    def gate_configured(self) -> bool:
        """True if biometrics or a PIN guard the session."""
        return self._biometrics_usable() or self._storage.has_pin()

    # Observers

    def subscribe(self, callback: Callable[[SessionEvent], None]) -> Callable[[], None]:
        """Register callback for state transitions and return an unsubscribe function."""
        with self._lock:
            self._observers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._observers:
                    self._observers.remove(callback)

        return unsubscribe

    def _notify(self, event: SessionEvent) -> None:
        for callback in list(self._observers):
            try:
                callback(event)
            except Exception:
                logger.exception("Session observer failed")

    # Transitions

    def _transition(self, new_state: SessionState, reason: TransitionReason) -> None:
        """Move to new_state and notify observers. Caller holds the lock."""
        from .metrics import SESSION_TRANSITIONS_TOTAL, SESSION_UNLOCKED

        previous = self._state
        if previous is new_state:
            return

        self._state = new_state
        self._transitions += 1
        if new_state is not SessionState.UNLOCKED:
            self._expires_at = None
            self._unlock_reason = None
            self._cancel_timer()
        if new_state is SessionState.LOCKED:
            self._expired = reason is TransitionReason.TIMEOUT

        SESSION_TRANSITIONS_TOTAL.labels(state=new_state.value, reason=reason.value).inc()
        SESSION_UNLOCKED.set(1 if new_state is SessionState.UNLOCKED else 0)
        logger.info(f"Session {previous.value} -> {new_state.value} ({reason.value})")
        self._notify(SessionEvent(state=new_state, previous=previous, reason=reason))

    def _unlock(self, reason: TransitionReason) -> None:
        with self._lock:
            self._failed_pin_attempts = 0
            if reason is TransitionReason.BIOMETRIC:
                self._pin_locked_until = None
            self._expired = False
            self._expires_at = self._clock() + self._session_timeout
            self._transition(SessionState.UNLOCKED, reason)
            self._unlock_reason = reason
            self._start_timer()

    def _lock_session(self, reason: TransitionReason) -> None:
        with self._lock:
            self._transition(SessionState.LOCKED, reason)

    # Timer

    def _cancel_timer(self) -> None:
        timer, self._timer = self._timer, None
        if timer is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        loop = self._loop
        if loop is not None and running is not loop and not loop.is_closed():
            # called from a worker thread (e.g. require_unlocked via to_thread)
            loop.call_soon_threadsafe(timer.cancel)
        else:
            timer.cancel()

    def _start_timer(self) -> None:
        """Replace any pending timer with one firing at the current deadline."""
        self._cancel_timer()
        if self._expires_at is None:
            return
        try:
            self._loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: require_unlocked enforces the deadline on its own
            return
        delay = max(0.0, self._expires_at - self._clock())
        self._timer = self._loop.call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
            if self._state is not SessionState.UNLOCKED or self._expires_at is None:
                return
            remaining = self._expires_at - self._clock()
            if remaining <= 0:
                self._transition(SessionState.LOCKED, TransitionReason.TIMEOUT)
            elif self._loop is not None:
                # activity moved the deadline; re-arm for the remainder
                self._timer = self._loop.call_later(remaining, self._on_timer)

    def _check_expiry(self) -> None:
        if (
            self._state is SessionState.UNLOCKED
            and self._expires_at is not None
            and self._clock() >= self._expires_at
        ):
            self._transition(SessionState.LOCKED, TransitionReason.TIMEOUT)

    # Public operations

    def record_activity(self) -> None:
        """Push the inactivity deadline forward if the session is unlocked."""
        with self._lock:
            self._check_expiry()
            if self._state is SessionState.UNLOCKED and self._expires_at is not None:
                self._expires_at = self._clock() + self._session_timeout

    def require_unlocked(self) -> None:
        """Raise unless the session is unlocked; counts as activity.

        Raises:
            SessionExpired: If the session locked itself after the timeout
            NotAuthenticated: If the session is otherwise not unlocked

        """
        with self._lock:
            self._check_expiry()
            if self._state is not SessionState.UNLOCKED:
                if self._expired:
                    raise SessionExpired("Session expired after inactivity")
                raise NotAuthenticated("Session is locked")
            self.record_activity()

    def require_biometric_unlock(self) -> None:
        """Like require_unlocked, but the unlock must have come from biometrics.

        Raises:
            BiometricRequired: If the session was unlocked without biometrics

        """
        with self._lock:
            self.require_unlocked()
            if self._unlock_reason is not TransitionReason.BIOMETRIC:
                raise BiometricRequired("Biometric authentication required")

    async def request_unlock(self) -> SessionState:
        """Start unlocking the session.

        Without a configured gate the session unlocks immediately. With
        biometrics, a successful prompt unlocks; a failed one falls back to
        PIN entry (AUTHENTICATING) when a PIN is set, else locks. With only
        a PIN, the session waits in AUTHENTICATING for authenticate_with_pin.

        Cancelling the call leaves the session LOCKED.
        """
        from .metrics import AUTH_ATTEMPTS_TOTAL

        with self._lock:
            self._check_expiry()
            if self._state is SessionState.UNLOCKED:
                self.record_activity()
                return self._state
            if not self.gate_configured:
                self._unlock(TransitionReason.NO_GATE)
                return self._state
            self._transition(SessionState.AUTHENTICATING, TransitionReason.REQUEST)
            use_biometrics = self._biometrics_usable()

        if not use_biometrics:
            return SessionState.AUTHENTICATING

        try:
            success = await asyncio.wait_for(
                self._biometrics.authenticate(UNLOCK_PROMPT),
                timeout=self._biometric_timeout,
            )
        except asyncio.CancelledError:
            self._lock_session(TransitionReason.CANCELLED)
            raise
        except TimeoutError:
            logger.warning("Biometric authentication timed out")
            success = False
        except Exception:
            logger.exception("Biometric authentication failed with an error")
            success = False

        AUTH_ATTEMPTS_TOTAL.labels(method="biometric", outcome="success" if success else "failure").inc()

        with self._lock:
            if self._state is not SessionState.AUTHENTICATING:
                # cancelled or logged out while the prompt was open
                return self._state
            if success:
                self._unlock(TransitionReason.BIOMETRIC)
            elif self._storage.has_pin():
                logger.info("Biometric authentication failed, falling back to PIN")
            else:
                self._lock_session(TransitionReason.AUTH_FAILED)
            return self._state

    async def authenticate_with_pin(self, pin: str) -> bool:
        """Verify pin and unlock the session on success.

        A wrong PIN keeps the session AUTHENTICATING. Once
        ``max_pin_attempts`` consecutive failures are reached the session
        locks and further PINs are refused for ``pin_lockout`` seconds, or
        until a biometric unlock succeeds.

        If the authentication is cancelled, or the session locks, while the
        PIN is being verified, the result is discarded and False is returned.
        """
        from .metrics import AUTH_ATTEMPTS_TOTAL

        with self._lock:
            self._check_expiry()
            remaining = self.pin_lockout_remaining
            if remaining is not None:
                AUTH_ATTEMPTS_TOTAL.labels(method="pin", outcome="locked_out").inc()
                logger.warning(f"PIN entry refused, locked out for another {remaining:.0f}s")
                return False
            started_unlocked = self._state is SessionState.UNLOCKED
            if self._state is SessionState.LOCKED:
                self._transition(SessionState.AUTHENTICATING, TransitionReason.REQUEST)
            generation = self._transitions

        try:
            verified = await asyncio.to_thread(self._storage.verify_pin, pin)
        except asyncio.CancelledError:
            self._lock_session(TransitionReason.CANCELLED)
            raise

        AUTH_ATTEMPTS_TOTAL.labels(method="pin", outcome="success" if verified else "failure").inc()

        with self._lock:
            self._check_expiry()
            if self._transitions != generation:
                logger.info("PIN verification finished after the authentication ended, ignoring result")
                return False

            if verified:
                if started_unlocked:
                    self.record_activity()
                else:
                    self._unlock(TransitionReason.PIN)
                return True

            self._failed_pin_attempts += 1
            logger.warning(f"PIN verification failed (attempt {self._failed_pin_attempts})")
            if 0 < self._max_pin_attempts <= self._failed_pin_attempts:
                self._failed_pin_attempts = 0
                self._pin_locked_until = self._clock() + self._pin_lockout
                self._transition(SessionState.LOCKED, TransitionReason.PIN_ATTEMPTS_EXCEEDED)
        return False

    def cancel_authentication(self) -> None:
        """Abandon an in-progress authentication."""
        with self._lock:
            if self._state is SessionState.AUTHENTICATING:
                self._transition(SessionState.LOCKED, TransitionReason.CANCELLED)

    def logout(self) -> None:
        """Lock immediately and cancel the session timer."""
        with self._lock:
            self._expired = False
            self._transition(SessionState.LOCKED, TransitionReason.LOGOUT)
            self._cancel_timer()

    def on_background(self) -> None:
        """Pause the session timer, or lock if configured to lock on background."""
        with self._lock:
            self._check_expiry()
            self._backgrounded = True
            self._cancel_timer()
            if self._state is SessionState.UNLOCKED:
                if self._lock_on_background:
                    self._transition(SessionState.LOCKED, TransitionReason.BACKGROUND)
                else:
                    self._expires_at = None
            elif self._state is SessionState.AUTHENTICATING:
                self._transition(SessionState.LOCKED, TransitionReason.BACKGROUND)

    async def on_foreground(self) -> SessionState:
        """Restart the timer if unlocked, otherwise request an unlock."""
        with self._lock:
            self._backgrounded = False
            if self._state is SessionState.UNLOCKED:
                self._expires_at = self._clock() + self._session_timeout
                self._start_timer()
                return self._state
        return await self.request_unlock()

    async def set_pin(self, pin: str) -> None:
        """Set or replace the PIN. Requires an unlocked session."""
        self.require_unlocked()
        await asyncio.to_thread(self._storage.set_pin, pin)

    def remove_pin(self) -> bool:
        self.require_unlocked()
        return self._storage.remove_pin()

    def enable_biometric(self, enabled: bool) -> None:
        self._biometric_enabled = enabled
        logger.info(f"Biometric unlock {'enabled' if enabled else 'disabled'}")

    def close(self) -> None:
        """Cancel the pending timer without changing state."""
        with self._lock:
            self._cancel_timer()
