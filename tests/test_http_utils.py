import threading
import time
import unittest
from unittest import mock

import requests
from cloudscraper.exceptions import CloudflareChallengeError

from chapterdex.errors import FetchCancelled, FetchExhausted, TransientFetchError
from chapterdex.http_utils import fetch_page
from chapterdex.models import PageResult, RetryPolicy
from chapterdex.parsing import parse_page_result
from tests.fakes import DripResponse, FakeSession, chapter_page

URL: str = 'https://api.mangadex.org/chapter'


class TestFetchPage(unittest.TestCase):
    """
    Tests the bounded-retry page fetcher.
    """

    def setUp(self) -> None:
        patcher = mock.patch('chapterdex.http_utils.time.sleep')
        self.sleep = patcher.start()
        self.addCleanup(patcher.stop)

    def test_retry_then_succeed(self) -> None:
        """
        Checks that two failures followed by a success yield the page, after backing off 0.5s then 1.0s.
        """
        session = FakeSession({'/chapter': [requests.ConnectionError('reset'), 503, chapter_page(0, 3, total=3)]})
        policy = RetryPolicy(timeout=5, max_retries=2, base_delay=0.5)
        with self.assertLogs('chapterdex.http_utils', level='WARNING'):
            page: PageResult = fetch_page(session, URL, parser=parse_page_result, policy=policy)
        self.assertEqual(page.returned_count, 3)
        self.assertEqual(page.total, 3)
        self.assertEqual(len(session.calls), 3)
        waits: list = [call.args[0] for call in self.sleep.call_args_list]
        self.assertEqual(waits, [0.5, 1.0])
        self.assertGreaterEqual(sum(waits), 0.5 + 0.5 * 2)

    def test_exhaustion_raises_after_all_attempts(self) -> None:
        """
        Checks that max_retries + 1 timeouts raise FetchExhausted chained from the last timeout.
        """
        session = FakeSession({'/chapter': [requests.Timeout('slow')]})
        policy = RetryPolicy(timeout=1, max_retries=2, base_delay=0.25)
        with self.assertLogs('chapterdex.http_utils', level='WARNING') as logs:
            with self.assertRaises(FetchExhausted) as ctx:
                fetch_page(session, URL, parser=parse_page_result, policy=policy, purpose='Chapter page 1')
        self.assertEqual(ctx.exception.attempts, 3)
        self.assertEqual(len(session.calls), 3)
        self.assertIsInstance(ctx.exception.__cause__, TransientFetchError)
        self.assertEqual(ctx.exception.__cause__.cause, 'timeout')
        self.assertEqual(len(logs.records), 3)
        self.assertIn('Chapter page 1 attempt 1/3 failed [timeout]', logs.output[0])
        self.assertEqual([call.args[0] for call in self.sleep.call_args_list], [0.25, 0.5])

    def test_http_error_status_is_a_failed_attempt(self) -> None:
        """
        Checks that a non-success status is retried rather than parsed, and reported with its code.
        """
        session = FakeSession({'/chapter': [500, chapter_page(0, 1)]})
        with self.assertLogs('chapterdex.http_utils', level='WARNING') as logs:
            page: PageResult = fetch_page(session, URL, parser=parse_page_result, policy=RetryPolicy(max_retries=1, base_delay=0))
        self.assertEqual(page.returned_count, 1)
        self.assertIn('[http] (HTTP 500)', logs.output[0])

    def test_non_json_body_is_retried(self) -> None:
        """
        Checks that an unparseable body counts as a failed attempt.
        """
        session = FakeSession({'/chapter': ['<html>maintenance</html>', chapter_page(0, 2)]})
        with self.assertLogs('chapterdex.http_utils', level='WARNING') as logs:
            page: PageResult = fetch_page(session, URL, parser=parse_page_result, policy=RetryPolicy(max_retries=1, base_delay=0))
        self.assertEqual(page.returned_count, 2)
        self.assertIn('[malformed]', logs.output[0])

    def test_cancelled_before_start_makes_no_request(self) -> None:
        """
        Checks that an already-set cancel event stops the fetch before any request.
        """
        session = FakeSession({'/chapter': [chapter_page(0, 1)]})
        cancel_event = threading.Event()
        cancel_event.set()
        with self.assertRaises(FetchCancelled):
            fetch_page(session, URL, parser=parse_page_result, cancel_event=cancel_event)
        self.assertEqual(session.calls, [])

    def test_cancel_during_backoff(self) -> None:
        """
        Checks that cancelling while waiting to retry raises FetchCancelled instead of retrying.
        """
        cancel_event = threading.Event()

        def fail_and_cancel(url: str, params: dict) -> Exception:
            cancel_event.set()
            return requests.ConnectionError('dropped')

        session = FakeSession({'/chapter': [fail_and_cancel, chapter_page(0, 1)]})
        with self.assertRaises(FetchCancelled):
            fetch_page(session, URL, parser=parse_page_result, policy=RetryPolicy(max_retries=3, base_delay=30), cancel_event=cancel_event)
        self.assertEqual(len(session.calls), 1)

    def test_result_discarded_when_cancelled_in_flight(self) -> None:
        """
        Checks that a response arriving after cancellation is not returned.
        """
        cancel_event = threading.Event()

        def succeed_and_cancel(url: str, params: dict) -> dict:
            cancel_event.set()
            return chapter_page(0, 5)

        session = FakeSession({'/chapter': [succeed_and_cancel]})
        with self.assertRaises(FetchCancelled):
            fetch_page(session, URL, parser=parse_page_result, cancel_event=cancel_event)

    def test_slow_body_is_cut_off_at_the_attempt_deadline(self) -> None:
        """
        Checks that a body trickling in one byte every 0.1s fails the attempt once the timeout has elapsed.
        """
        session = FakeSession({'/chapter': [DripResponse(URL, chapter_page(0, 1), interval=0.1)]})
        started: float = time.monotonic()
        with self.assertLogs('chapterdex.http_utils', level='WARNING'):
            with self.assertRaises(FetchExhausted) as ctx:
                fetch_page(session, URL, parser=parse_page_result, policy=RetryPolicy(timeout=0.5, max_retries=0))
        elapsed: float = time.monotonic() - started
        self.assertEqual(ctx.exception.__cause__.cause, 'timeout')
        self.assertLess(elapsed, 1.5)

    def test_cloudflare_challenge_is_retried(self) -> None:
        """
        Checks that a Cloudflare challenge counts as a failed attempt rather than escaping.
        """
        session = FakeSession({'/chapter': [CloudflareChallengeError('challenge'), chapter_page(0, 2)]})
        with self.assertLogs('chapterdex.http_utils', level='WARNING') as logs:
            page: PageResult = fetch_page(session, URL, parser=parse_page_result, policy=RetryPolicy(max_retries=1, base_delay=0))
        self.assertEqual(page.returned_count, 2)
        self.assertIn('[challenge]', logs.output[0])

    def test_cancel_aborts_a_blocked_request(self) -> None:
        """
        Checks that cancelling while the server has not answered returns promptly instead of waiting for it.
        """
        cancel_event = threading.Event()
        release = threading.Event()
        self.addCleanup(release.set)

        def stall(url: str, params: dict) -> dict:
            release.wait(5)
            return chapter_page(0, 1)

        session = FakeSession({'/chapter': [stall]})
        threading.Timer(0.2, cancel_event.set).start()
        started: float = time.monotonic()
        with self.assertRaises(FetchCancelled):
            fetch_page(session, URL, parser=parse_page_result, policy=RetryPolicy(timeout=30), cancel_event=cancel_event)
        self.assertLess(time.monotonic() - started, 2.0)


if __name__ == '__main__':
    unittest.main()
