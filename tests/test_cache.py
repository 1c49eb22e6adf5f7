import unittest
import tempfile
import os
import time
import sqlite3
from unittest.mock import patch, Mock

import requests

from storage.cache import Cache, rate_limited_get
from storage.retry import DEFAULT_TIMEOUT, RetryPolicy, perform_request_with_retries


def _resp(status=200, body=None, headers=None):
    r = Mock()
    r.status_code = status
    r.json.return_value = body
    r.text = str(body)
    r.headers = headers or {}
    return r


class TestCacheBehavior(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.NamedTemporaryFile(delete=False)
        self.path = tmp.name
        tmp.close()
        self.cache = Cache(self.path)

    def tearDown(self):
        self.cache.close()
        try:
            os.remove(self.path)
        except OSError:
            pass

    def test_cache_set_get(self):
        self.cache.set('k1', {'a': 1}, status=200)
        entry = self.cache.get('k1')
        self.assertIsNotNone(entry)
        self.assertEqual(entry['response'], {'a': 1})
        self.assertEqual(entry['status'], 200)
        self.assertIn('timestamp', entry)

    def test_rate_limited_get_caches_response(self):
        with patch('storage.retry.requests.request', return_value=_resp(body={'a': 1})):
            res1 = rate_limited_get('http://example.com', headers={}, params={}, cache=self.cache, cache_key='k2', min_wait=0)
            self.assertEqual(res1['response'], {'a': 1})
            self.assertEqual(res1['status'], 200)

        # cached hit must not touch the network
        with patch('storage.retry.requests.request', side_effect=AssertionError('request should not be called on cached hit')):
            res2 = rate_limited_get('http://example.com', headers={}, params={}, cache=self.cache, cache_key='k2', min_wait=0)
            self.assertEqual(res2['response'], {'a': 1})

    def test_rate_limited_get_respects_max_age(self):
        with patch('storage.retry.requests.request', return_value=_resp(body={'a': 1})):
            rate_limited_get('http://example.com', cache=self.cache, cache_key='k3', min_wait=0)

        conn = sqlite3.connect(self.path)
        conn.execute('UPDATE http_cache SET timestamp = ? WHERE key = ?', (time.time() - 3600, 'k3'))
        conn.commit()
        conn.close()

        with patch('storage.retry.requests.request', return_value=_resp(body={'a': 2})) as mocked:
            res = rate_limited_get('http://example.com', cache=self.cache, cache_key='k3', min_wait=0, max_age=5)
            self.assertEqual(res['response'], {'a': 2})
            self.assertTrue(mocked.called)

    def test_invalidate_prefix_only_removes_matching_keys(self):
        self.cache.set('jira:projects', [{'key': 'ABC'}])
        self.cache.set('jira:projects:page2', [])
        self.cache.set('jira:issue:ABC-1:id', {'id': '1'})
        removed = self.cache.invalidate('jira:projects')
        self.assertEqual(removed, 2)
        self.assertIsNone(self.cache.get('jira:projects'))
        self.assertIsNotNone(self.cache.get('jira:issue:ABC-1:id'))

    def test_invalidate_escapes_like_wildcards(self):
        self.cache.set('a_b', 1)
        self.cache.set('axb', 2)
        self.assertEqual(self.cache.invalidate('a_'), 1)
        self.assertIsNotNone(self.cache.get('axb'))

    def test_ttl_expires_entries(self):
        cache = Cache(ttl_seconds=60)
        cache.set('k', {'v': 1})
        cache.conn.execute('UPDATE http_cache SET timestamp = ?', (time.time() - 120,))
        self.assertIsNone(cache.get('k'))
        cache.close()

    def test_max_entries_prunes_oldest(self):
        cache = Cache(max_entries=2)
        for i in range(3):
            cache.set(f'k{i}', i)
            cache.conn.execute('UPDATE http_cache SET timestamp = ? WHERE key = ?', (1000.0 + i, f'k{i}'))
        cache.set('k3', 3)
        self.assertEqual(cache.stats()['count'], 2)
        self.assertIsNone(cache.get('k0'))
        cache.close()


class TestRetry(unittest.TestCase):
    def test_retries_after_rate_limit(self):
        responses = [_resp(429, {'error': 'slow down'}, {'Retry-After': '0'}), _resp(200, {'ok': True})]
        with patch('storage.retry.requests.request', side_effect=responses) as mocked, patch('storage.retry.time.sleep') as slept:
            res = perform_request_with_retries('http://example.com', {}, {}, None, '', 0, 3, backoff_jitter=0)
        self.assertEqual(res['status'], 200)
        self.assertEqual(res['response'], {'ok': True})
        self.assertEqual(mocked.call_count, 2)
        self.assertTrue(slept.called)

    def test_client_error_is_returned_without_retry(self):
        with patch('storage.retry.requests.request', return_value=_resp(400, {'errors': [{'message': 'bad'}]})) as mocked:
            res = perform_request_with_retries('http://example.com', {}, {}, None, '', 0, 3)
        self.assertEqual(res['status'], 400)
        self.assertEqual(res['response'], {'errors': [{'message': 'bad'}]})
        self.assertEqual(mocked.call_count, 1)

    def test_post_is_never_cached(self):
        cache = Cache()
        with patch('storage.retry.requests.request', return_value=_resp(201, {'tempoWorklogId': 7})) as mocked:
            res = perform_request_with_retries('http://example.com', {}, {}, cache, 'key', 0, 3, method='post', json_body={'a': 1})
        self.assertEqual(res['status'], 201)
        self.assertIsNone(cache.get('key'))
        self.assertEqual(mocked.call_args[0][0], 'POST')
        self.assertEqual(mocked.call_args[1]['json'], {'a': 1})
        cache.close()

    def test_no_content_response(self):
        with patch('storage.retry.requests.request', return_value=_resp(204)):
            res = perform_request_with_retries('http://example.com', {}, {}, None, '', 0, 3, method='DELETE')
        self.assertEqual(res['status'], 204)
        self.assertIsNone(res['response'])

    def test_post_read_timeout_is_not_resent(self):
        with patch('storage.retry.requests.request', side_effect=requests.ReadTimeout('read timed out')) as mocked, patch('storage.retry.time.sleep'):
            res = perform_request_with_retries('http://example.com', {}, {}, None, '', 0, 3, method='POST', json_body={'a': 1})
        self.assertEqual(res['status'], 0)
        self.assertIn('read timed out', res['response'])
        self.assertEqual(mocked.call_count, 1)

    def test_post_server_unavailable_is_not_resent(self):
        with patch('storage.retry.requests.request', return_value=_resp(503, {'error': 'busy'})) as mocked, patch('storage.retry.time.sleep'):
            res = perform_request_with_retries('http://example.com', {}, {}, None, '', 0, 3, method='POST')
        self.assertEqual(res['status'], 503)
        self.assertEqual(mocked.call_count, 1)

    def test_post_connection_failure_is_resent(self):
        responses = [requests.ConnectionError('connection refused'), _resp(201, {'tempoWorklogId': 7})]
        with patch('storage.retry.requests.request', side_effect=responses) as mocked, patch('storage.retry.time.sleep'):
            res = perform_request_with_retries('http://example.com', {}, {}, None, '', 0, 3, method='POST', backoff_jitter=0)
        self.assertEqual(res['status'], 201)
        self.assertEqual(mocked.call_count, 2)

    def test_get_read_timeout_is_retried(self):
        responses = [requests.ReadTimeout('read timed out'), _resp(200, {'ok': True})]
        with patch('storage.retry.requests.request', side_effect=responses) as mocked, patch('storage.retry.time.sleep'):
            res = perform_request_with_retries('http://example.com', {}, {}, None, '', 0, 3, backoff_jitter=0)
        self.assertEqual(res['status'], 200)
        self.assertEqual(mocked.call_count, 2)

    def test_timeout_comes_from_policy(self):
        with patch('storage.retry._policy', RetryPolicy(timeout=5.0)), \
                patch('storage.retry.requests.request', return_value=_resp(200, {})) as mocked:
            perform_request_with_retries('http://example.com', {}, {}, None, '', 0, 3)
        self.assertEqual(mocked.call_args[1]['timeout'], 5.0)
        with patch('storage.retry._policy', RetryPolicy()), \
                patch('storage.retry.requests.request', return_value=_resp(200, {})) as mocked:
            perform_request_with_retries('http://example.com', {}, {}, None, '', 0, 3)
        self.assertEqual(mocked.call_args[1]['timeout'], DEFAULT_TIMEOUT)


if __name__ == '__main__':
    unittest.main()
