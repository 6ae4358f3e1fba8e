"""Orchestrates clipboard translations triggered by the hotkey or tray menu."""

from __future__ import annotations

import enum
import itertools
import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Union

import prompt_codec
from config_store import AppConfig
from hotkey_gate import HotkeyGate
from prompt_codec import EncodedPrompt, preview
from translation_errors import ErrorKind, MalformedResponseError, TranslationError


logger = logging.getLogger("thirdspace.translation")

BUSY_TITLE = "Busy"
CLIPBOARD_FAILED_TITLE = "Clipboard failed"
GENERIC_FAILURE_TITLE = "Translation failed"


class TriggerSource(enum.Enum):
    HOTKEY = "hotkey"
    MENU = "menu"


class CoordinatorState(enum.Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"


class NotificationKind(str, enum.Enum):
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class TranslationRequest:
    source_text: str
    target_language: str
    model_id: str
    api_key: str
    reasoning_enabled: bool
    request_id: int = 0
    source: TriggerSource = TriggerSource.MENU


@dataclass(frozen=True)
class TranslationSuccess:
    translated_text: str


@dataclass(frozen=True)
class TranslationFailure:
    kind: ErrorKind
    message: str


TranslationResult = Union[TranslationSuccess, TranslationFailure]


class ClipboardProtocol(Protocol):  # pragma: no cover - protocol is for type checking only
    def read_text(self) -> str:
        ...

    def write_text(self, text: str) -> None:
        ...


class NotifierProtocol(Protocol):  # pragma: no cover - protocol is for type checking only
    def notify(self, kind: NotificationKind, title: str) -> None:
        ...


class ChatClientProtocol(Protocol):  # pragma: no cover - protocol is for type checking only
    def send(self, prompt: EncodedPrompt, model_id: str, api_key: str, reasoning_enabled: bool) -> str:
        ...


class InFlightGuard:
    """Process-wide "translation in progress" flag.

    ``try_acquire`` is an atomic check-and-set, so two triggers racing from
    the hotkey dispatcher and the tray thread cannot both win.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()


class TranslationCoordinator:
    """Idle/in-flight state machine around encode, send and decode.

    Triggers are accepted on the caller's thread and the network exchange
    runs on a single worker thread. A trigger that arrives while a request
    is in flight is dropped, never queued behind it.
    """

    def __init__(
        self,
        client: ChatClientProtocol,
        clipboard: ClipboardProtocol,
        notifier: NotifierProtocol,
        config_provider: Callable[[], AppConfig],
        *,
        gate: Optional[HotkeyGate] = None,
        guard: Optional[InFlightGuard] = None,
    ) -> None:
        self._client = client
        self._clipboard = clipboard
        self._notifier = notifier
        self._config_provider = config_provider
        self.gate = gate if gate is not None else HotkeyGate()
        self._guard = guard if guard is not None else InFlightGuard()
        self._request_queue: "queue.Queue[Optional[TranslationRequest]]" = queue.Queue()
        self._request_ids = itertools.count(1)
        self._result_handlers: List[Callable[[TranslationResult], None]] = []
        self._worker_thread: Optional[threading.Thread] = None

    @property
    def state(self) -> CoordinatorState:
        return CoordinatorState.IN_FLIGHT if self._guard.in_flight else CoordinatorState.IDLE

    def register_result_handler(self, handler: Callable[[TranslationResult], None]) -> None:
        self._result_handlers.append(handler)

    def start(self) -> None:
        if self._worker_thread is not None and self._worker_thread.is_alive():
            return
        self._worker_thread = threading.Thread(
            target=self._process_requests,
            name="TranslationWorker",
            daemon=True,
        )
        self._worker_thread.start()

    def stop(self) -> None:
        if self._worker_thread is not None and self._worker_thread.is_alive():
            self._request_queue.put(None)
            self._worker_thread.join(timeout=1)
        self._worker_thread = None

    def handle_hotkey(self) -> bool:
        return self.trigger(TriggerSource.HOTKEY)

    def handle_menu(self) -> bool:
        return self.trigger(TriggerSource.MENU)

    def trigger(self, source: TriggerSource) -> bool:
        """Accept a translation trigger; return ``True`` if a request was started."""

        if source is TriggerSource.HOTKEY and self.gate.suspended:
            logger.debug("Hotkey trigger ignored while shortcut recording is active")
            return False

        if not self._guard.try_acquire():
            logger.info("Translation requested while busy (source=%s)", source.value)
            self._notify(NotificationKind.ERROR, BUSY_TITLE)
            return False

        try:
            text = self._clipboard.read_text()
        except Exception as exc:
            logger.error("Clipboard read failed: %s", exc)
            self._guard.release()
            self._notify(NotificationKind.ERROR, CLIPBOARD_FAILED_TITLE)
            return False

        config = self._config_provider()
        request = TranslationRequest(
            source_text=text or "",
            target_language=config.target_language,
            model_id=config.model,
            api_key=config.api_key,
            reasoning_enabled=config.reasoning_enabled,
            request_id=next(self._request_ids),
            source=source,
        )
        logger.info(
            "Translation triggered | request_id=%d source=%s model=%s target_language=%s reasoning=%s input_len=%d",
            request.request_id,
            source.value,
            request.model_id,
            request.target_language,
            request.reasoning_enabled,
            len(request.source_text),
        )
        self._notify(NotificationKind.PROCESSING, "")
        self._request_queue.put(request)
        return True

    def _process_requests(self) -> None:
        while True:
            request = self._request_queue.get()
            try:
                if request is None:
                    break
                self._process_single_request(request)
            finally:
                self._request_queue.task_done()

    def _process_single_request(self, request: TranslationRequest) -> TranslationResult:
        started = time.perf_counter()
        try:
            result = self._translate(request)
        except Exception:
            logger.exception("Unexpected error during translation | request_id=%d", request.request_id)
            result = TranslationFailure(kind=ErrorKind.INTERNAL_ERROR, message=GENERIC_FAILURE_TITLE)
        finally:
            self._guard.release()

        logger.info(
            "Translation finished | request_id=%d outcome=%s duration_ms=%d",
            request.request_id,
            "success" if isinstance(result, TranslationSuccess) else "failure",
            int((time.perf_counter() - started) * 1000),
        )
        self._deliver(result)
        return result

    def _translate(self, request: TranslationRequest) -> TranslationResult:
        try:
            prompt = prompt_codec.encode(request.source_text, request.target_language)
            raw_response = self._client.send(
                prompt,
                request.model_id,
                request.api_key,
                request.reasoning_enabled,
            )
            translated = prompt_codec.decode(raw_response)
        except TranslationError as exc:
            if isinstance(exc, MalformedResponseError) and exc.excerpt:
                logger.error(
                    "Translation failed | request_id=%d kind=%s error=%s excerpt=%s",
                    request.request_id,
                    exc.kind.value,
                    exc,
                    exc.excerpt,
                )
            else:
                logger.error(
                    "Translation failed | request_id=%d kind=%s error=%s",
                    request.request_id,
                    exc.kind.value,
                    exc,
                )
            return TranslationFailure(kind=exc.kind, message=exc.summary)

        if prompt.multi_paragraph:
            translated = prompt_codec.restore_paragraphs(translated, prompt.paragraph_separators)
        logger.info(
            "Translation extracted | request_id=%d translated_len=%d preview=%s",
            request.request_id,
            len(translated),
            preview(translated, 200),
        )
        return TranslationSuccess(translated_text=translated)

    def _deliver(self, result: TranslationResult) -> None:
        if isinstance(result, TranslationSuccess):
            try:
                self._clipboard.write_text(result.translated_text)
            except Exception as exc:
                logger.error("Clipboard write failed: %s", exc)
                self._notify(NotificationKind.ERROR, CLIPBOARD_FAILED_TITLE)
            else:
                self._notify(NotificationKind.SUCCESS, "")
        else:
            self._notify(NotificationKind.ERROR, result.message)

        for handler in list(self._result_handlers):
            try:
                handler(result)
            except Exception:  # pragma: no cover - listeners must not break the worker
                logger.exception("Translation result handler failed")

    def _notify(self, kind: NotificationKind, title: str) -> None:
        try:
            self._notifier.notify(kind, title)
        except Exception:  # pragma: no cover - a broken toast must not stop translations
            logger.exception("Notification failed (kind=%s)", kind.value)
