# src/cookie_recovery/extractor.py
import logging
import time
from typing import Callable, List, Optional

from cookie_recovery.config import ExtractionSettings
from cookie_recovery.errors import (
    APP_BOUND_REMEDIATION,
    NO_SECRET_FACILITY_REMEDIATION,
    CookieRecoveryError,
    ExtractionFailed,
    PlatformUnsupported,
    Unsupported,
)
from cookie_recovery.models import (
    BrowserState,
    DecryptedCookie,
    EventKind,
    ExtractionEvent,
    ExtractionStrategy,
    RawCookie,
)
from cookie_recovery.utils.browser import ProcessOrchestrator, ProfilePaths, StateDetector
from cookie_recovery.utils.cdp import CdpClient, ProtocolMethodVersion
from cookie_recovery.utils.cipher import CookieCipher
from cookie_recovery.utils.cookie_db import decrypt_cookies, read_raw_cookies
from cookie_recovery.utils.domains import filter_by_domain
from cookie_recovery.utils.platforms import Platform, current_platform, get_browser_family
from cookie_recovery.utils.retry import with_retry

logger = logging.getLogger(__name__)

EventCallback = Callable[[ExtractionEvent], None]

# Errors no other strategy can get past.
TERMINAL_ERRORS = (Unsupported, PlatformUnsupported)


def select_strategy(state: BrowserState, want_debug: bool, allow_auto_launch: bool) -> ExtractionStrategy:
    """Map the detected state and the caller's flags to one extraction strategy."""
    if state is BrowserState.RUNNING_WITH_DEBUGGING:
        return ExtractionStrategy.USE_EXISTING_SESSION
    if allow_auto_launch:
        if state is BrowserState.RUNNING_WITHOUT_DEBUGGING:
            return ExtractionStrategy.RESTART_WITH_DEBUGGING
        return ExtractionStrategy.LAUNCH_WITH_ORIGINAL_PROFILE
    if state is BrowserState.RUNNING_WITHOUT_DEBUGGING and want_debug:
        # Bound to fail; the failure is surfaced before the fallback.
        return ExtractionStrategy.USE_EXISTING_SESSION
    return ExtractionStrategy.DIRECT_DATABASE_READ


def remediation_for(
    state: BrowserState,
    want_debug: bool,
    allow_auto_launch: bool,
    cause: Optional[BaseException],
    browser: str = "the browser",
    port: int = 9222,
) -> List[str]:
    if isinstance(cause, Unsupported):
        return list(APP_BOUND_REMEDIATION)
    if isinstance(cause, PlatformUnsupported):
        return list(NO_SECRET_FACILITY_REMEDIATION)
    if state is BrowserState.RUNNING_WITHOUT_DEBUGGING and (want_debug or allow_auto_launch):
        return [
            f"Close every {browser} process, including background ones (check the task manager)",
            f"Or start {browser} manually with --remote-debugging-port={port}",
        ]
    if state is BrowserState.NOT_RUNNING and want_debug:
        return [
            "Enable auto-launch so the extractor starts the browser itself",
            f"Or start {browser} manually with --remote-debugging-port={port}",
        ]
    return [
        f"Close {browser} and retry with auto-launch enabled",
        "Use Firefox, which does not apply App-Bound Encryption",
        "Export the cookies with a browser extension",
    ]


class ExtractionOrchestrator:
    """Detects the browser state, runs one strategy and falls back once to the database."""

    def __init__(
        self,
        settings: Optional[ExtractionSettings] = None,
        platform: Optional[Platform] = None,
        paths: Optional[ProfilePaths] = None,
        cdp_client: Optional[CdpClient] = None,
        detector: Optional[StateDetector] = None,
        processes: Optional[ProcessOrchestrator] = None,
        on_event: Optional[EventCallback] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or ExtractionSettings()
        self.platform = platform or current_platform()
        self.family = get_browser_family(self.settings.browser)
        self.paths = paths or ProfilePaths(
            family=self.family,
            user_data_dir=self.platform.user_data_dir(self.family),
            profile_directory=self.settings.profile,
        )
        self.method = ProtocolMethodVersion.from_name(self.settings.method)
        self.cdp = cdp_client or CdpClient(port=self.settings.port, timeout=self.settings.request_timeout)
        self.detector = detector or StateDetector(
            self.family,
            port=self.settings.port,
            probe_timeout=self.settings.probe_timeout,
            host=self.platform,
        )
        self.processes = processes or ProcessOrchestrator(
            self.family,
            host=self.platform,
            port=self.settings.port,
            headless=self.settings.headless,
            startup_timeout=self.settings.startup_timeout,
            readiness_interval=self.settings.readiness_interval,
            terminate_grace=self.settings.terminate_grace,
        )
        self.on_event = on_event
        self._sleep = sleep

    def _emit(self, kind: EventKind, message: str, **data) -> None:
        logger.debug(f"[{kind.value}] {message}")
        if self.on_event:
            self.on_event(ExtractionEvent(kind=kind, message=message, data=data))

    def extract(
        self, domain: str, want_debug: bool = False, allow_auto_launch: bool = False
    ) -> List[DecryptedCookie]:
        """Best-effort list of decrypted cookies matching ``domain``.

        An empty list is a success. Terminal failures raise ExtractionFailed.
        """
        state = self.detector.detect()
        self._emit(EventKind.STATE_DETECTED, f"{self.family.display_name} state: {state.value}", state=state)

        strategy = select_strategy(state, want_debug, allow_auto_launch)
        self._emit(EventKind.STRATEGY_SELECTED, f"Strategy: {strategy.value}", strategy=strategy)
        logger.info(f"Extracting cookies for {domain}: state={state.value}, strategy={strategy.value}")

        try:
            cookies = self._execute(strategy, domain)
        except CookieRecoveryError as exc:
            if isinstance(exc, TERMINAL_ERRORS) or not strategy.uses_protocol:
                self._fail(domain, state, strategy, want_debug, allow_auto_launch, exc)
            logger.warning(f"Strategy {strategy.value} failed: {exc.message}")
            self._emit(
                EventKind.FALLBACK,
                f"{strategy.value} failed ({exc.message}); falling back to direct database read",
                strategy=strategy,
                error=exc,
            )
            try:
                cookies = self._execute(ExtractionStrategy.DIRECT_DATABASE_READ, domain)
            except CookieRecoveryError as fallback_exc:
                self._fail(domain, state, strategy, want_debug, allow_auto_launch, fallback_exc)

        self._emit(EventKind.SUCCEEDED, f"Found {len(cookies)} cookies for {domain}", count=len(cookies))
        logger.info(f"Found {len(cookies)} cookies for {domain}")
        return cookies

    def _fail(self, domain, state, strategy, want_debug, allow_auto_launch, cause: CookieRecoveryError):
        remediation = remediation_for(
            state,
            want_debug,
            allow_auto_launch,
            cause,
            browser=self.family.display_name,
            port=self.settings.port,
        )
        message = (
            f"Could not extract cookies for {domain} "
            f"(state: {state.value}, strategy: {strategy.value}): {cause.message}"
        )
        self._emit(EventKind.FAILED, message, state=state, strategy=strategy, error=cause)
        logger.error(message)
        raise ExtractionFailed(message, state, strategy, cause=cause, remediation=remediation) from cause

    def _execute(self, strategy: ExtractionStrategy, domain: str) -> List[DecryptedCookie]:
        if not strategy.uses_protocol:
            return self._read_database(domain)
        if strategy is ExtractionStrategy.USE_EXISTING_SESSION:
            raw = self._fetch_via_protocol()
        elif strategy is ExtractionStrategy.RESTART_WITH_DEBUGGING:
            raw = self._restart_with_debugging()
        else:
            raw = self._launch_with_original_profile()
        return decrypt_cookies(filter_by_domain(raw, domain), cipher=None)

    def _fetch_via_protocol(self) -> List[RawCookie]:
        max_attempts = self.settings.max_attempts
        attempt = 0

        def fetch() -> List[RawCookie]:
            nonlocal attempt
            attempt += 1
            self._emit(
                EventKind.ATTEMPT,
                f"Querying {self.method.method} (attempt {attempt}/{max_attempts})",
                attempt=attempt,
                max_attempts=max_attempts,
            )
            return self.cdp.get_cookies(self.method)

        def on_retry(failed_attempt: int, total: int, delay: float, exc: BaseException) -> None:
            self._emit(
                EventKind.RETRY_SCHEDULED,
                f"Attempt {failed_attempt}/{total} failed; retrying in {int(delay * 1000)}ms",
                attempt=failed_attempt,
                max_attempts=total,
                delay=delay,
                error=exc,
            )

        return with_retry(
            fetch,
            max_attempts,
            base_delay=self.settings.retry_base_delay,
            on_retry=on_retry,
            sleep=self._sleep,
        )

    def _restart_with_debugging(self) -> List[RawCookie]:
        display = self.family.display_name
        self._emit(
            EventKind.BROWSER_TERMINATING,
            f"{display} will be closed in {self.settings.restart_warning_delay:g} seconds and reopened with debugging",
            delay=self.settings.restart_warning_delay,
        )
        self._sleep(self.settings.restart_warning_delay)

        closed = self.processes.terminate_all()
        logger.info(f"Signalled {closed} {display} processes")
        if self.paths.cookies_db.exists():
            self.processes.wait_for_release(
                self.paths.cookies_db,
                timeout=self.settings.release_timeout,
                interval=self.settings.release_interval,
            )
        return self._launch_with_original_profile()

    def _launch_with_original_profile(self) -> List[RawCookie]:
        with self.processes.launch_with_profile(self.paths.user_data_dir, self.paths.profile_directory) as handle:
            self._emit(
                EventKind.BROWSER_LAUNCHED,
                f"{self.family.display_name} started with debugging on port {self.settings.port}",
                pid=handle.pid,
            )
            self._emit(
                EventKind.SETTLING,
                f"Waiting {self.settings.settle_delay:g} seconds for the profile to load",
                delay=self.settings.settle_delay,
            )
            self._sleep(self.settings.settle_delay)
            return self._fetch_via_protocol()

    def _read_database(self, domain: str) -> List[DecryptedCookie]:
        self._emit(EventKind.ATTEMPT, f"Reading cookie database {self.paths.cookies_db}", attempt=1, max_attempts=1)
        cipher = CookieCipher.from_local_state(str(self.paths.local_state), self.platform.secret_unwrapper())
        raw = read_raw_cookies(str(self.paths.cookies_db))
        return decrypt_cookies(filter_by_domain(raw, domain), cipher)


def get_cookies_for_domain(
    domain: str,
    want_debug: bool = False,
    allow_auto_launch: bool = False,
    settings: Optional[ExtractionSettings] = None,
    on_event: Optional[EventCallback] = None,
) -> List[DecryptedCookie]:
    """Recover the decrypted cookies of a locally installed browser for ``domain``.

    Settings default to the loaded configuration file. Raises ExtractionFailed
    with remediation steps when no strategy succeeds.
    """
    settings = settings or ExtractionSettings.from_config()
    orchestrator = ExtractionOrchestrator(settings, on_event=on_event)
    return orchestrator.extract(domain, want_debug=want_debug, allow_auto_launch=allow_auto_launch)
