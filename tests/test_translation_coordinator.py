import queue
import threading
import unittest

from config_store import AppConfig
from prompt_codec import MARKER_END, MARKER_START
from translation_coordinator import (
    BUSY_TITLE,
    CLIPBOARD_FAILED_TITLE,
    GENERIC_FAILURE_TITLE,
    CoordinatorState,
    NotificationKind,
    TranslationCoordinator,
    TranslationFailure,
    TranslationSuccess,
    TriggerSource,
)
from translation_errors import ErrorKind, MissingApiKeyError, NetworkError


class FakeClipboard:
    def __init__(self, text: str = "Hola mundo") -> None:
        self.text = text
        self.writes = []
        self.fail_read = False
        self.fail_write = False

    def read_text(self) -> str:
        if self.fail_read:
            raise RuntimeError("clipboard locked")
        return self.text

    def write_text(self, text: str) -> None:
        if self.fail_write:
            raise RuntimeError("clipboard locked")
        self.writes.append(text)


class FakeNotifier:
    def __init__(self) -> None:
        self.notifications = []

    def notify(self, kind, title) -> None:
        self.notifications.append((kind, title))

    @property
    def last(self):
        return self.notifications[-1]


class FakeClient:
    def __init__(self, reply: str = f"{MARKER_START}Hello world{MARKER_END}") -> None:
        self.reply = reply
        self.error = None
        self.calls = []

    def send(self, prompt, model_id, api_key, reasoning_enabled) -> str:
        if not api_key:
            raise MissingApiKeyError("API key is empty")
        self.calls.append((prompt, model_id, api_key, reasoning_enabled))
        if self.error is not None:
            raise self.error
        return self.reply


class EchoClient(FakeClient):
    def send(self, prompt, model_id, api_key, reasoning_enabled) -> str:
        super().send(prompt, model_id, api_key, reasoning_enabled)
        return f"{MARKER_START}{prompt.user_content}{MARKER_END}"


class TranslationCoordinatorTests(unittest.TestCase):
    def _create(self, *, config: AppConfig = AppConfig(api_key="secret"), **overrides):
        self.clipboard = overrides.pop("clipboard", FakeClipboard())
        self.notifier = FakeNotifier()
        self.client = overrides.pop("client", FakeClient())
        self.results = []
        coordinator = TranslationCoordinator(
            self.client,
            self.clipboard,
            self.notifier,
            lambda: config,
            **overrides,
        )
        coordinator.register_result_handler(self.results.append)
        return coordinator

    def _run_pending(self, coordinator: TranslationCoordinator):
        request = coordinator._request_queue.get_nowait()
        return coordinator._process_single_request(request)

    def test_end_to_end_success(self) -> None:
        coordinator = self._create(config=AppConfig(api_key="secret", target_language="English"))

        self.assertTrue(coordinator.handle_menu())
        self.assertIs(coordinator.state, CoordinatorState.IN_FLIGHT)
        self.assertEqual(self.notifier.last, (NotificationKind.PROCESSING, ""))

        result = self._run_pending(coordinator)

        self.assertEqual(result, TranslationSuccess("Hello world"))
        self.assertEqual(self.results, [result])
        self.assertEqual(self.clipboard.writes, ["Hello world"])
        self.assertEqual(self.notifier.last[0], NotificationKind.SUCCESS)
        self.assertIs(coordinator.state, CoordinatorState.IDLE)
        prompt, model_id, api_key, reasoning = self.client.calls[0]
        self.assertEqual(prompt.user_content, "Hola mundo")
        self.assertIn("English", prompt.system_instruction)
        self.assertEqual((model_id, api_key, reasoning), (AppConfig().model, "secret", True))

    def test_missing_api_key_fails_without_network_call(self) -> None:
        coordinator = self._create(config=AppConfig(api_key=""))
        coordinator.handle_hotkey()
        result = self._run_pending(coordinator)

        self.assertEqual(result, TranslationFailure(ErrorKind.MISSING_API_KEY, "Check your API key"))
        self.assertEqual(self.client.calls, [])
        self.assertEqual(self.clipboard.writes, [])
        self.assertEqual(self.notifier.last, (NotificationKind.ERROR, "Check your API key"))
        self.assertIs(coordinator.state, CoordinatorState.IDLE)

    def test_empty_clipboard_never_reaches_client(self) -> None:
        coordinator = self._create(clipboard=FakeClipboard("   "))
        coordinator.handle_menu()
        result = self._run_pending(coordinator)

        self.assertEqual(result.kind, ErrorKind.EMPTY_INPUT)
        self.assertEqual(self.client.calls, [])
        self.assertEqual(self.notifier.last, (NotificationKind.ERROR, "No text to translate"))

    def test_malformed_response_leaves_clipboard_untouched(self) -> None:
        coordinator = self._create(client=FakeClient(f"{MARKER_START}Hello world"))
        coordinator.handle_menu()
        result = self._run_pending(coordinator)

        self.assertEqual(result.kind, ErrorKind.MALFORMED_RESPONSE)
        self.assertEqual(self.clipboard.writes, [])
        self.assertEqual(self.notifier.last, (NotificationKind.ERROR, "Unexpected response"))

    def test_network_error_is_reported(self) -> None:
        client = FakeClient()
        client.error = NetworkError("Request timed out after 30.0s")
        coordinator = self._create(client=client)
        coordinator.handle_menu()
        result = self._run_pending(coordinator)

        self.assertEqual(result, TranslationFailure(ErrorKind.NETWORK_ERROR, "Network error"))
        self.assertIs(coordinator.state, CoordinatorState.IDLE)

    def test_duplicate_trigger_is_dropped_while_in_flight(self) -> None:
        coordinator = self._create()
        self.assertTrue(coordinator.handle_menu())

        self.assertFalse(coordinator.handle_menu())
        self.assertFalse(coordinator.handle_hotkey())

        self.assertEqual(coordinator._request_queue.qsize(), 1)
        self.assertIs(coordinator.state, CoordinatorState.IN_FLIGHT)
        self.assertEqual(self.notifier.last, (NotificationKind.ERROR, BUSY_TITLE))

        self._run_pending(coordinator)
        self.assertEqual(len(self.client.calls), 1)
        self.assertTrue(coordinator.handle_menu())

    def test_suspended_gate_blocks_hotkey_but_not_menu(self) -> None:
        coordinator = self._create()
        coordinator.gate.pause()

        self.assertFalse(coordinator.handle_hotkey())
        self.assertIs(coordinator.state, CoordinatorState.IDLE)
        self.assertEqual(self.notifier.notifications, [])

        self.assertTrue(coordinator.trigger(TriggerSource.MENU))
        request = coordinator._request_queue.get_nowait()
        self.assertIs(request.source, TriggerSource.MENU)
        coordinator._process_single_request(request)

        coordinator.gate.resume()
        self.assertTrue(coordinator.handle_hotkey())

    def test_guard_is_released_after_unexpected_exception(self) -> None:
        client = FakeClient()
        client.error = ZeroDivisionError("boom")
        coordinator = self._create(client=client)
        coordinator.handle_menu()

        with self.assertLogs("thirdspace.translation", level="ERROR"):
            result = self._run_pending(coordinator)

        self.assertEqual(result, TranslationFailure(ErrorKind.INTERNAL_ERROR, GENERIC_FAILURE_TITLE))
        self.assertIs(coordinator.state, CoordinatorState.IDLE)
        self.assertEqual(self.clipboard.writes, [])

    def test_clipboard_read_failure_releases_guard(self) -> None:
        clipboard = FakeClipboard()
        clipboard.fail_read = True
        coordinator = self._create(clipboard=clipboard)

        self.assertFalse(coordinator.handle_menu())
        self.assertIs(coordinator.state, CoordinatorState.IDLE)
        self.assertTrue(coordinator._request_queue.empty())
        self.assertEqual(self.notifier.last, (NotificationKind.ERROR, CLIPBOARD_FAILED_TITLE))

    def test_clipboard_write_failure_is_reported(self) -> None:
        clipboard = FakeClipboard()
        clipboard.fail_write = True
        coordinator = self._create(clipboard=clipboard)
        coordinator.handle_menu()
        self._run_pending(coordinator)

        self.assertEqual(self.notifier.last, (NotificationKind.ERROR, CLIPBOARD_FAILED_TITLE))
        self.assertIs(coordinator.state, CoordinatorState.IDLE)

    def test_multi_paragraph_translation_restores_layout(self) -> None:
        client = FakeClient(f"{MARKER_START}\nFirst.\n%%\nSecond.\n{MARKER_END}")
        coordinator = self._create(clipboard=FakeClipboard("Primero.\n\nSegundo."), client=client)
        coordinator.handle_menu()
        result = self._run_pending(coordinator)

        self.assertEqual(client.calls[0][0].user_content, "Primero.\n%%\nSegundo.")
        self.assertEqual(result, TranslationSuccess("First.\n\nSecond."))

    def test_echoed_reply_keeps_indentation_and_blank_lines(self) -> None:
        source = "Example:\n\n    def f():\n        return 1\n\n\n\nEnd."
        client = EchoClient()
        coordinator = self._create(clipboard=FakeClipboard(source), client=client)
        coordinator.handle_menu()
        result = self._run_pending(coordinator)

        self.assertEqual(client.calls[0][0].user_content, "Example:\n%%\n    def f():\n        return 1\n%%\nEnd.")
        self.assertEqual(result, TranslationSuccess(source))
        self.assertEqual(self.clipboard.writes, [source])

    def test_requests_get_increasing_ids(self) -> None:
        coordinator = self._create()
        coordinator.handle_menu()
        first = coordinator._request_queue.get_nowait()
        coordinator._process_single_request(first)
        coordinator.handle_menu()
        second = coordinator._request_queue.get_nowait()
        self.assertGreater(second.request_id, first.request_id)

    def test_worker_thread_processes_requests(self) -> None:
        coordinator = self._create()
        done = threading.Event()
        coordinator.register_result_handler(lambda _result: done.set())
        coordinator.start()
        try:
            self.assertTrue(coordinator.handle_menu())
            self.assertTrue(done.wait(timeout=2))
        finally:
            coordinator.stop()
        self.assertEqual(self.clipboard.writes, ["Hello world"])

    def test_concurrent_triggers_start_one_request(self) -> None:
        coordinator = self._create()
        barrier = threading.Barrier(8)
        outcomes: "queue.Queue[bool]" = queue.Queue()

        def fire() -> None:
            barrier.wait()
            outcomes.put(coordinator.handle_menu())

        threads = [threading.Thread(target=fire) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        results = [outcomes.get_nowait() for _ in range(8)]
        self.assertEqual(results.count(True), 1)
        self.assertEqual(coordinator._request_queue.qsize(), 1)


if __name__ == "__main__":  # pragma: no cover - allows direct execution
    unittest.main()
