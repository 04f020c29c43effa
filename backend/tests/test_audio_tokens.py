"""Tests for audio credential issuing."""
from datetime import timedelta

import jwt
import pytest

from app.core.exceptions import AudioNotConfiguredError, AuthorizationError, ValidationFailedError
from app.services.audio_tokens import AudioCredentialIssuer, issue_channel_credentials, numeric_uid


class TestNumericUid:

    def test_known_values(self):
        assert numeric_uid("a") == 97
        assert numeric_uid("ab") == 97 * 31 + 98

    def test_stable_and_in_range(self):
        for user_id in ("user-1", "host-1", "5f0c2a9e-8a4b-4bb0-9a77-3f1f0f9c7d21", "x" * 200):
            uid = numeric_uid(user_id)
            assert uid == numeric_uid(user_id)
            assert 1 <= uid < 2147483647

    def test_empty_id_never_maps_to_zero(self):
        assert numeric_uid("") == 1


class TestIssuer:

    def test_issue_and_verify(self):
        issuer = AudioCredentialIssuer(app_id="test-app-id", app_certificate="test-app-certificate")
        credential = issuer.issue("circle-1-abc", uid=42)

        claims = issuer.verify(credential["token"])
        assert claims["channel"] == "circle-1-abc"
        assert claims["uid"] == 42
        assert credential["autoUid"] is False
        assert credential["appId"] == "test-app-id"

    def test_expiry_follows_ttl(self, audio_issuer, clock):
        credential = audio_issuer.issue("circle-1-abc")
        assert credential["expiresAt"] == clock() + timedelta(seconds=3600)
        assert credential["autoUid"] is True

    def test_other_certificate_cannot_verify(self):
        issuer = AudioCredentialIssuer(app_id="test-app-id", app_certificate="test-app-certificate")
        other = AudioCredentialIssuer(app_id="test-app-id", app_certificate="another-certificate")
        token = issuer.issue("circle-1-abc")["token"]
        with pytest.raises(jwt.InvalidTokenError):
            other.verify(token)

    @pytest.mark.parametrize("app_id,certificate", [
        ("", "cert"),
        ("app", ""),
        ("your-audio-app-id-here", "cert"),
        ("app", "your-audio-app-certificate-here"),
    ])
    def test_unconfigured_issuer(self, app_id, certificate):
        issuer = AudioCredentialIssuer(app_id=app_id, app_certificate=certificate)
        assert issuer.configured is False
        with pytest.raises(AudioNotConfiguredError) as exc_info:
            issuer.issue("circle-1-abc")
        assert exc_info.value.http_status == 503


class TestChannelAuthorization:

    @pytest.mark.asyncio
    async def test_circle_member_gets_numeric_uid(self, db, circle_mgr, audio_issuer, host, users):
        circle = await circle_mgr.create_circle(db, host, "Voice room")
        await circle_mgr.join_circle(db, users[0], circle.id)

        credential = await issue_channel_credentials(
            db, users[0], circle.channel_name, "support-circle",
            circle_manager=circle_mgr, issuer=audio_issuer,
        )

        assert credential["uid"] == numeric_uid(users[0].id)
        assert credential["channelName"] == circle.channel_name

    @pytest.mark.asyncio
    async def test_outsider_is_refused(self, db, circle_mgr, audio_issuer, host, users):
        circle = await circle_mgr.create_circle(db, host, "Voice room")

        with pytest.raises(AuthorizationError):
            await issue_channel_credentials(
                db, users[1], circle.channel_name, "support-circle",
                circle_manager=circle_mgr, issuer=audio_issuer,
            )

    @pytest.mark.asyncio
    async def test_ai_voice_channel_is_personal(self, db, circle_mgr, audio_issuer, users):
        credential = await issue_channel_credentials(
            db, users[0], f"ai-voice-{users[0].id}", "ai-voice",
            circle_manager=circle_mgr, issuer=audio_issuer,
        )
        assert credential["uid"] == 0
        assert credential["autoUid"] is True

        with pytest.raises(ValidationFailedError):
            await issue_channel_credentials(
                db, users[0], f"ai-voice-{users[1].id}", "ai-voice",
                circle_manager=circle_mgr, issuer=audio_issuer,
            )

    @pytest.mark.asyncio
    async def test_unknown_channel_type(self, db, circle_mgr, audio_issuer, users):
        with pytest.raises(ValidationFailedError):
            await issue_channel_credentials(
                db, users[0], "whatever", "broadcast",
                circle_manager=circle_mgr, issuer=audio_issuer,
            )
