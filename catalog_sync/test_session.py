#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Unit tests for the Aluno Online login handshake and session renewal.
"""

import sys
import threading
import unittest
from datetime import timedelta
from unittest.mock import MagicMock, Mock

import requests

from catalog_sync.core.exceptions import AuthError
from catalog_sync.scrapers.requests_scraper.session import PortalSession, SessionAuthenticator
from catalog_sync.test_support import BASE_URL, CREDENTIALS, FakeResponse, home_page, login_page


class TestSessionAuthenticator(unittest.TestCase):
    """Form login against a mocked requests.Session"""

    def setUp(self):
        self.http = MagicMock()
        self.authenticator = SessionAuthenticator(
            BASE_URL + '/',
            timeout=5,
            session_factory=lambda: self.http,
        )

    def test_login_success(self):
        self.http.request.side_effect = [
            FakeResponse(200, login_page()),
            FakeResponse(200, home_page()),
        ]

        session = self.authenticator.authenticate(CREDENTIALS)

        self.assertIs(session.http, self.http)
        self.assertEqual(session.generation, 0)
        self.assertFalse(session.is_expired())

        get_call, post_call = self.http.request.call_args_list
        self.assertEqual(get_call.args, ('GET', 'https://portal.test/requisicaoaluno/'))
        self.assertEqual(post_call.args, ('POST', 'https://portal.test/requisicaoaluno/?controle=Login'))
        self.assertEqual(post_call.kwargs['timeout'], 5)
        self.assertEqual(post_call.kwargs['data'], {
            '_token': 'abc123',
            'requisicao': 'Login',
            'matricula': '201910012345',
            'senha': 'segredo',
        })
        self.http.close.assert_not_called()

    def test_invalid_credentials(self):
        self.http.request.side_effect = [
            FakeResponse(200, login_page()),
            FakeResponse(200, login_page(error='Matrícula ou senha incorreta')),
        ]

        with self.assertRaises(AuthError) as ctx:
            self.authenticator.authenticate(CREDENTIALS)

        self.assertEqual(ctx.exception.reason, AuthError.INVALID_CREDENTIALS)
        self.assertIn('senha incorreta', str(ctx.exception))
        self.http.close.assert_called_once()

    def test_portal_unreachable(self):
        self.http.request.side_effect = requests.ConnectionError('connection refused')

        with self.assertRaises(AuthError) as ctx:
            self.authenticator.authenticate(CREDENTIALS)

        self.assertEqual(ctx.exception.reason, AuthError.PORTAL_UNAVAILABLE)

    def test_portal_server_error(self):
        self.http.request.return_value = FakeResponse(503, 'Service Unavailable')

        with self.assertRaises(AuthError) as ctx:
            self.authenticator.authenticate(CREDENTIALS)

        self.assertEqual(ctx.exception.reason, AuthError.PORTAL_UNAVAILABLE)

    def test_login_page_without_form(self):
        self.http.request.return_value = FakeResponse(200, '<html><body>Manutenção</body></html>')

        with self.assertRaises(AuthError) as ctx:
            self.authenticator.authenticate(CREDENTIALS)

        self.assertEqual(ctx.exception.reason, AuthError.UNEXPECTED_RESPONSE_SHAPE)

    def test_unexpected_status(self):
        self.http.request.side_effect = [
            FakeResponse(200, login_page()),
            FakeResponse(302, ''),
        ]

        with self.assertRaises(AuthError) as ctx:
            self.authenticator.authenticate(CREDENTIALS)

        self.assertEqual(ctx.exception.reason, AuthError.UNEXPECTED_RESPONSE_SHAPE)

    def test_password_not_in_repr(self):
        self.assertNotIn('segredo', repr(CREDENTIALS))


class TestPortalSession(unittest.TestCase):
    """Generation-based renewal shared by worker threads"""

    def setUp(self):
        self.http = MagicMock()
        self.authenticator = Mock()
        self.session = PortalSession(self.http, CREDENTIALS, self.authenticator, timedelta(minutes=20))
        self.session._stamp()

    def test_renew_once_per_generation(self):
        self.session.renew(0)
        self.session.renew(0)

        self.authenticator.login.assert_called_once_with(self.http, CREDENTIALS)
        self.http.cookies.clear.assert_called_once()
        self.assertEqual(self.session.generation, 1)

    def test_second_rejection_without_success_is_fatal(self):
        self.session.renew(0)

        with self.assertRaises(AuthError) as ctx:
            self.session.renew(1)

        self.assertEqual(ctx.exception.reason, AuthError.SESSION_REJECTED)
        self.assertEqual(self.authenticator.login.call_count, 1)

    def test_renew_again_after_success(self):
        self.session.renew(0)
        self.session.mark_success(1)
        self.session.renew(1)

        self.assertEqual(self.session.generation, 2)
        self.assertEqual(self.authenticator.login.call_count, 2)

    def test_login_failure_during_renewal_propagates(self):
        self.authenticator.login.side_effect = AuthError(AuthError.INVALID_CREDENTIALS, 'senha alterada')

        with self.assertRaises(AuthError):
            self.session.renew(0)
        self.assertEqual(self.session.generation, 0)

    def test_ensure_fresh_renews_expired_session(self):
        self.session.expires_at = self.session.authenticated_at - timedelta(seconds=1)

        self.session.ensure_fresh()

        self.authenticator.login.assert_called_once()
        self.assertFalse(self.session.is_expired())

    def test_ensure_fresh_keeps_live_session(self):
        self.session.ensure_fresh()
        self.authenticator.login.assert_not_called()

    def test_lifetime_renewal_is_not_a_rejection(self):
        self.session.expires_at = self.session.authenticated_at - timedelta(seconds=1)
        self.session.ensure_fresh()

        # Portal rejects the renewed session once: still allowed to log in again
        self.session.renew(1)

        self.assertEqual(self.session.generation, 2)
        self.assertEqual(self.authenticator.login.call_count, 2)

    def test_success_with_older_generation_does_not_count(self):
        self.session.renew(0)
        self.session.mark_success(0)

        with self.assertRaises(AuthError) as ctx:
            self.session.renew(1)

        self.assertEqual(ctx.exception.reason, AuthError.SESSION_REJECTED)


class TestConcurrentRenewal(unittest.TestCase):
    """Renewal with real worker threads"""

    def setUp(self):
        self.http = MagicMock()
        self.authenticator = Mock()
        self.session = PortalSession(self.http, CREDENTIALS, self.authenticator, timedelta(minutes=20))
        self.session._stamp()
        self.errors = {}

    def run_workers(self, targets):
        def guarded(name, target):
            try:
                target()
            except AuthError as e:
                self.errors[name] = e

        threads = [
            threading.Thread(target=guarded, args=(name, target), name=name)
            for name, target in targets.items()
        ]
        for thread in threads:
            thread.start()
        return threads

    def test_workers_seeing_same_generation_log_in_once(self):
        barrier = threading.Barrier(4, timeout=5)

        def worker():
            barrier.wait()
            self.session.renew(0)

        for thread in self.run_workers({f'worker-{i}': worker for i in range(4)}):
            thread.join(5)

        self.assertEqual(self.errors, {})
        self.authenticator.login.assert_called_once()
        self.assertEqual(self.session.generation, 1)

    def test_lifetime_renewal_racing_another_worker(self):
        self.session.expires_at = self.session.authenticated_at - timedelta(seconds=1)
        slow_checked = threading.Event()
        fast_done = threading.Event()
        check_expiry = self.session.is_expired

        def is_expired(now=None):
            expired = check_expiry(now)
            if threading.current_thread().name == 'slow':
                # Let the other worker renew between this check and the renewal
                slow_checked.set()
                fast_done.wait(5)
            return expired

        self.session.is_expired = is_expired

        slow, = self.run_workers({'slow': self.session.ensure_fresh})
        self.assertTrue(slow_checked.wait(5))
        fast, = self.run_workers({'fast': self.session.ensure_fresh})
        fast.join(5)
        fast_done.set()
        slow.join(5)

        self.assertEqual(self.errors, {})
        self.authenticator.login.assert_called_once()
        self.assertEqual(self.session.generation, 1)


if __name__ == '__main__':
    result = unittest.main(exit=False, verbosity=2).result
    sys.exit(0 if result.wasSuccessful() else 1)
