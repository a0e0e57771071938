"""Tests for MagicLinkGateway - sign-in links, identities and the current session."""

import json
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import pytest

from auth.config import AuthConfig
from auth.exceptions import (
    DeliveryError,
    DomainNotAllowedError,
    ExpiredLinkError,
    InvalidEmailError,
    InvalidLinkError,
    NetworkError,
    SessionExpiredError,
)
from auth.gateway import MagicLinkGateway
from auth.security_logger import SecurityEvent
from clients.email_client import EmailGatewayError
from utils.timezone import now_utc


def _token(link):
    return parse_qs(urlsplit(link).query)["token"][0]


def _logged_events(mock_security_logger):
    return [c.args[0] for c in mock_security_logger.log.call_args_list]


@pytest.fixture
def issue(gateway, config, last_link):
    """Issue a link for email and return it."""

    def _issue(email="jane@example.com"):
        gateway.issue_sign_in_link(email, config.continue_url)
        return last_link()

    return _issue


class TestBuildLink:

    def test_adds_mode_and_token(self):
        link = MagicLinkGateway.build_link("https://finance.example.com/auth/verify", "abc")
        query = parse_qs(urlsplit(link).query)
        assert link.startswith("https://finance.example.com/auth/verify?")
        assert query == {"mode": ["signIn"], "token": ["abc"]}

    def test_keeps_existing_query(self):
        link = MagicLinkGateway.build_link("https://finance.example.com/auth/verify?email=a%40b.com", "abc")
        assert parse_qs(urlsplit(link).query)["email"] == ["a@b.com"]


class TestIssueSignInLink:

    def test_emails_link_to_continue_url(self, issue, mock_email_client, config):
        link = issue()

        kwargs = mock_email_client.send_sign_in_link.call_args.kwargs
        assert kwargs["email"] == "jane@example.com"
        assert kwargs["app_name"] == config.app_name
        assert link.startswith(config.continue_url)

    def test_stores_unused_record_with_retention_ttl(self, issue, valkey, config):
        token = _token(issue())

        key = f"signin_link:{token}"
        record = json.loads(valkey.data[key])
        assert record["used"] is False
        assert record["email"] == "jane@example.com"
        assert valkey.ttls[key] == config.link_retention_hours * 3600

    def test_each_request_gets_a_new_token(self, issue):
        assert _token(issue()) != _token(issue())

    def test_invalid_email_rejected_before_anything_stored(self, gateway, valkey, mock_email_client, config):
        with pytest.raises(InvalidEmailError):
            gateway.issue_sign_in_link("not-an-email", config.continue_url)

        assert valkey.data == {}
        mock_email_client.send_sign_in_link.assert_not_called()

    def test_delivery_failure(self, gateway, mock_email_client, mock_security_logger, config):
        mock_email_client.send_sign_in_link.side_effect = EmailGatewayError("Gateway error: down")

        with pytest.raises(DeliveryError):
            gateway.issue_sign_in_link("jane@example.com", config.continue_url)

        assert SecurityEvent.SIGN_IN_LINK_FAILED in _logged_events(mock_security_logger)
        assert SecurityEvent.SIGN_IN_LINK_SENT not in _logged_events(mock_security_logger)

    def test_unreachable_store(self, gateway, valkey, config):
        valkey.unreachable = True

        with pytest.raises(NetworkError):
            gateway.issue_sign_in_link("jane@example.com", config.continue_url)


class TestIsValidLinkToken:

    def test_issued_link_is_valid(self, gateway, issue):
        assert gateway.is_valid_link_token(issue())

    @pytest.mark.parametrize(
        "link",
        [
            "",
            "https://finance.example.com/auth/verify",
            "https://finance.example.com/auth/verify?mode=resetPassword&token=" + "a" * 43,
            "https://finance.example.com/auth/verify?mode=signIn",
            "https://finance.example.com/auth/verify?mode=signIn&token=short",
            "https://finance.example.com/auth/verify?mode=signIn&token=" + "a" * 40 + "%21%21%21",
        ],
    )
    def test_malformed_links(self, gateway, link):
        assert not gateway.is_valid_link_token(link)

    def test_no_side_effects(self, gateway, valkey, mock_security_logger):
        gateway.is_valid_link_token("https://finance.example.com/auth/verify?mode=signIn&token=" + "a" * 43)

        assert valkey.data == {}
        mock_security_logger.log.assert_not_called()


class TestConsumeLinkToken:

    def test_returns_session_for_email(self, gateway, issue):
        session = gateway.consume_link_token("jane@example.com", issue())

        assert session.email == "jane@example.com"
        assert gateway.current_session() == session

    def test_email_match_is_case_insensitive(self, gateway, issue):
        session = gateway.consume_link_token("  Jane@Example.com ", issue())

        assert session is not None

    def test_link_is_single_use(self, gateway, issue):
        link = issue()
        gateway.consume_link_token("jane@example.com", link)

        with pytest.raises(InvalidLinkError, match="already been used"):
            gateway.consume_link_token("jane@example.com", link)

    def test_unknown_token(self, gateway):
        link = MagicLinkGateway.build_link("https://finance.example.com/auth/verify", "a" * 43)

        with pytest.raises(InvalidLinkError):
            gateway.consume_link_token("jane@example.com", link)

    def test_expired_link(self, gateway, issue, valkey):
        link = issue()
        key = f"signin_link:{_token(link)}"
        record = json.loads(valkey.data[key])
        record["expires_at"] = (now_utc() - timedelta(minutes=1)).isoformat()
        valkey.data[key] = json.dumps(record)

        with pytest.raises(ExpiredLinkError):
            gateway.consume_link_token("jane@example.com", link)

    def test_link_for_another_email(self, gateway, issue):
        link = issue("jane@example.com")

        with pytest.raises(InvalidLinkError):
            gateway.consume_link_token("artist@example.com", link)

        # Still usable by its owner
        assert gateway.consume_link_token("jane@example.com", link).email == "jane@example.com"

    def test_same_email_keeps_identity(self, gateway, issue):
        first = gateway.consume_link_token("jane@example.com", issue())
        second = gateway.consume_link_token("jane@example.com", issue())

        assert first.user_id == second.user_id
        assert first.token != second.token

    def test_different_emails_get_different_identities(self, gateway, issue):
        jane = gateway.consume_link_token("jane@example.com", issue("jane@example.com"))
        artist = gateway.consume_link_token("artist@example.com", issue("artist@example.com"))

        assert jane.user_id != artist.user_id

    def test_logs_verification(self, gateway, issue, mock_security_logger):
        gateway.consume_link_token("jane@example.com", issue())

        events = _logged_events(mock_security_logger)
        assert SecurityEvent.SIGN_IN_LINK_VERIFIED in events
        assert SecurityEvent.SESSION_CREATED in events


class TestSignInDirectly:

    def test_creates_session(self, gateway):
        session = gateway.sign_in_directly("jane@example.com")

        assert gateway.current_session() == session

    def test_invalid_email(self, gateway):
        with pytest.raises(InvalidEmailError):
            gateway.sign_in_directly("jane")

    def test_domain_allow_list(self, valkey, session_manager, mock_email_client, mock_security_logger):
        gateway = MagicLinkGateway(
            config=AuthConfig(use_email_link_auth=False, allowed_email_domains=["Example.com"]),
            valkey=valkey,
            session_manager=session_manager,
            email_client=mock_email_client,
            security_logger=mock_security_logger,
        )

        assert gateway.sign_in_directly("jane@example.com").email == "jane@example.com"
        with pytest.raises(DomainNotAllowedError):
            gateway.sign_in_directly("jane@elsewhere.org")
        assert SecurityEvent.DIRECT_SIGN_IN_REJECTED in _logged_events(mock_security_logger)


class TestSessionChanges:

    def test_subscriber_told_current_session_immediately(self, gateway):
        seen = []
        gateway.subscribe_session_changes(seen.append)

        assert seen == [None]

    def test_subscriber_told_about_sign_in_and_sign_out(self, gateway):
        seen = []
        gateway.subscribe_session_changes(seen.append)

        session = gateway.sign_in_directly("jane@example.com")
        gateway.destroy_session()

        assert seen == [None, session, None]

    def test_unsubscribe_stops_notifications(self, gateway):
        seen = []
        unsubscribe = gateway.subscribe_session_changes(seen.append)
        unsubscribe()

        gateway.sign_in_directly("jane@example.com")

        assert seen == [None]


class TestRestoreSession:

    def test_restores_stored_session(self, gateway, session_manager, test_user_id):
        stored = session_manager.create_session(test_user_id, "jane@example.com")

        restored = gateway.restore_session(stored.token)

        assert restored.user_id == test_user_id
        assert gateway.current_session() == restored

    def test_unknown_token(self, gateway):
        with pytest.raises(SessionExpiredError):
            gateway.restore_session("no-such-token")

        assert gateway.current_session() is None


class TestResumeSession:

    def test_same_token_is_refreshed_without_announcing(self, gateway, mock_security_logger):
        session = gateway.sign_in_directly("jane@example.com")
        seen = []
        gateway.subscribe_session_changes(seen.append)
        mock_security_logger.reset_mock()

        resumed = gateway.resume_session(session.token)

        assert resumed.token == session.token
        assert resumed.expires_at >= session.expires_at
        assert seen == [session]
        assert SecurityEvent.SESSION_RESTORED not in _logged_events(mock_security_logger)

    def test_other_token_is_restored(self, gateway, session_manager, test_user_id, mock_security_logger):
        gateway.sign_in_directly("jane@example.com")
        other = session_manager.create_session(test_user_id, "artist@example.com")

        resumed = gateway.resume_session(other.token)

        assert resumed.email == "artist@example.com"
        assert gateway.current_session() == resumed
        assert SecurityEvent.SESSION_RESTORED in _logged_events(mock_security_logger)

    def test_no_token_forgets_without_revoking(self, gateway, session_manager):
        session = gateway.sign_in_directly("jane@example.com")
        seen = []
        gateway.subscribe_session_changes(seen.append)

        assert gateway.resume_session(None) is None

        assert gateway.current_session() is None
        assert seen == [session, None]
        assert session_manager.validate_session(session.token).user_id == session.user_id

    def test_no_token_and_no_session_is_quiet(self, gateway):
        seen = []
        gateway.subscribe_session_changes(seen.append)

        gateway.resume_session(None)

        assert seen == [None]

    def test_revoked_token_drops_current(self, gateway, session_manager):
        session = gateway.sign_in_directly("jane@example.com")
        session_manager.revoke_session(session.token)

        with pytest.raises(SessionExpiredError):
            gateway.resume_session(session.token)

        assert gateway.current_session() is None

    def test_unknown_token_drops_current(self, gateway):
        gateway.sign_in_directly("jane@example.com")

        with pytest.raises(SessionExpiredError):
            gateway.resume_session("no-such-token")

        assert gateway.current_session() is None


class TestDestroySession:

    def test_revokes_stored_session(self, gateway, session_manager):
        session = gateway.sign_in_directly("jane@example.com")

        gateway.destroy_session()

        assert gateway.current_session() is None
        with pytest.raises(SessionExpiredError):
            session_manager.validate_session(session.token)

    def test_without_session_is_noop(self, gateway, mock_security_logger):
        gateway.destroy_session()

        mock_security_logger.log.assert_not_called()

    def test_failure_still_drops_local_session(self, gateway, valkey):
        seen = []
        gateway.sign_in_directly("jane@example.com")
        gateway.subscribe_session_changes(seen.append)
        valkey.unreachable = True

        with pytest.raises(NetworkError):
            gateway.destroy_session()

        assert gateway.current_session() is None
        assert seen[-1] is None
