"""
Tests for growth/api/promoters.py, growth/api/promoter_self.py and the auth
dependencies in growth/api/deps.py.

Endpoints are called directly with the SQLite session; Redis is mocked.
"""
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError

from factories import make_promoter, make_user
from growth.api import promoter_self, promoters as promoters_api
from growth.api.deps import (
    client_ip,
    create_access_token,
    get_current_admin,
    get_current_promoter,
    get_current_user,
    request_meta,
)
from growth.errors import ConflictError, DomainRuleViolation, Reason
from growth.models.promoter import PromoterStatus
from growth.models.share_link import ShareChannel
from growth.models.trial_invite import TrialInviteStatus
from growth.schemas.promoters import (
    CodeRequest,
    CreateShareLinkRequest,
    CreateTrialInviteRequest,
    RegisterPromoterRequest,
    TrackRefRequest,
    UpdatePromoterProfileRequest,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _mock_request(ip="203.0.113.10", headers=None):
    request = MagicMock()
    request.headers = {"user-agent": "pytest-agent", **(headers or {})}
    request.client.host = ip
    return request


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


# ---------------------------------------------------------------------------
# Auth dependencies
# ---------------------------------------------------------------------------

class TestAuthDependencies:
    async def test_valid_token_resolves_user(self, db):
        user = make_user(db)
        await db.flush()
        resolved = await get_current_user(_bearer(create_access_token(user.id)), db)
        assert resolved.id == user.id

    async def test_expired_token(self, db):
        user = make_user(db)
        await db.flush()
        token = create_access_token(user.id, expires_in=timedelta(seconds=-10))
        with pytest.raises(HTTPException) as exc:
            await get_current_user(_bearer(token), db)
        assert exc.value.status_code == 401
        assert exc.value.detail == "Token expired"

    async def test_garbage_token(self, db):
        with pytest.raises(HTTPException) as exc:
            await get_current_user(_bearer("not-a-jwt"), db)
        assert exc.value.status_code == 401

    async def test_unknown_user(self, db):
        with pytest.raises(HTTPException) as exc:
            await get_current_user(_bearer(create_access_token(uuid.uuid4())), db)
        assert exc.value.status_code == 401

    async def test_promoter_required(self, db):
        user = make_user(db)
        await db.flush()
        with pytest.raises(HTTPException) as exc:
            await get_current_promoter(user, db)
        assert exc.value.status_code == 403

    async def test_inactive_promoter_rejected(self, db):
        user = make_user(db)
        await db.flush()
        make_promoter(db, user_id=user.id, status=PromoterStatus.SUSPENDED, is_active=False)
        await db.flush()
        with pytest.raises(HTTPException) as exc:
            await get_current_promoter(user, db)
        assert exc.value.status_code == 403

    async def test_operational_promoter(self, db):
        user = make_user(db)
        await db.flush()
        promoter = make_promoter(db, user_id=user.id)
        await db.flush()
        assert (await get_current_promoter(user, db)).id == promoter.id

    async def test_admin_required(self):
        with pytest.raises(HTTPException) as exc:
            await get_current_admin(MagicMock(is_admin=False))
        assert exc.value.status_code == 403

    def test_client_ip_prefers_forwarded_for(self):
        request = _mock_request(headers={"x-forwarded-for": "198.51.100.1, 10.0.0.1"})
        assert client_ip(request) == "198.51.100.1"
        assert client_ip(_mock_request()) == "203.0.113.10"

    def test_request_meta(self):
        meta = request_meta(_mock_request(headers={"referer": "https://line.me/"}))
        assert meta.user_agent == "pytest-agent"
        assert meta.referer == "https://line.me/"


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------

class TestRegisterEndpoint:
    async def test_register(self, db):
        result = await promoters_api.register(
            RegisterPromoterRequest(name="Volunteer Wu", email="wu@example.com"), db,
        )
        assert result.status == PromoterStatus.PENDING
        assert result.is_active is False

    def test_contact_required(self):
        with pytest.raises(ValidationError):
            RegisterPromoterRequest(name="No Contact")

    async def test_duplicate(self, db):
        await promoters_api.register(RegisterPromoterRequest(name="A", email="a@example.com"), db)
        with pytest.raises(ConflictError):
            await promoters_api.register(RegisterPromoterRequest(name="B", email="a@example.com"), db)


class TestTrackRefEndpoint:
    async def test_tracks_promoter_click(self, db, mock_redis):
        promoter = make_promoter(db, name="Tracker")
        await db.flush()
        result = await promoters_api.track_ref(
            TrackRefRequest(code=promoter.referral_code, url="https://vote.example.com/?ref=x"),
            _mock_request(), db,
        )
        assert result == {"tracked": True, "type": "promoter", "name": "Tracker"}

    async def test_unknown_code_is_not_an_error(self, db, mock_redis):
        result = await promoters_api.track_ref(TrackRefRequest(code="ZZZZZZ"), _mock_request(), db)
        assert result["tracked"] is False

    async def test_rate_limited(self, db):
        with patch("growth.api.promoters.check_track_ref_limit",
                   new_callable=AsyncMock, return_value=(False, 60)):
            with pytest.raises(HTTPException) as exc:
                await promoters_api.track_ref(TrackRefRequest(code="ABCDEF"), _mock_request(), db)
        assert exc.value.status_code == 429
        assert exc.value.headers["Retry-After"] == "60"


class TestCodeEndpoints:
    async def test_validate(self, db):
        promoter = make_promoter(db)
        await db.flush()
        result = await promoters_api.validate_code(promoter.referral_code, db)
        assert result["valid"] is True

    async def test_trial_info_and_claim(self, db):
        promoter = make_promoter(db, name="Inviter")
        user = make_user(db)
        await db.flush()
        from growth.services.trial_invites import create_trial_invite
        invite = await create_trial_invite(db, promoter.id, 10)

        info = await promoters_api.get_trial_info(invite.code, db)
        assert info["promoter_name"] == "Inviter"
        assert info["is_available"] is True

        claimed = await promoters_api.claim_trial(CodeRequest(code=invite.code), db, user)
        assert claimed.status == "TRIAL"
        assert claimed.trial_ends_at is not None
        assert invite.status == TrialInviteStatus.ACTIVATED

    async def test_apply_referral(self, db):
        promoter = make_promoter(db)
        user = make_user(db)
        await db.flush()
        result = await promoters_api.apply_referral(CodeRequest(code=promoter.referral_code), db, user)
        assert result.promoter_id == str(promoter.id)
        assert result.status == "REGISTERED"

        with pytest.raises(ConflictError):
            await promoters_api.apply_referral(CodeRequest(code=promoter.referral_code), db, user)

    async def test_share_link_resolve(self, db):
        promoter = make_promoter(db)
        await db.flush()
        from growth.services.promoters import create_share_link
        link = await create_share_link(db, promoter.id, ShareChannel.QR_CODE, "https://vote.example.com/qr")

        result = await promoters_api.get_share_link(link.code, _mock_request(), db)
        assert result["channel"] == "QR_CODE"
        assert result["target_url"] == "https://vote.example.com/qr"


# ---------------------------------------------------------------------------
# Promoter self-service
# ---------------------------------------------------------------------------

class TestPromoterSelfEndpoints:
    async def test_profile_and_update(self, db):
        promoter = make_promoter(db)
        await db.flush()

        profile = await promoter_self.get_profile(db, promoter)
        assert profile.promoter.id == str(promoter.id)
        assert profile.trial_config.default_trial_days == 14

        updated = await promoter_self.update_profile(
            UpdatePromoterProfileRequest(region="Kaohsiung"), db, promoter,
        )
        assert updated.region == "Kaohsiung"

    async def test_issue_list_and_mark_sent(self, db):
        promoter = make_promoter(db)
        await db.flush()

        created = await promoter_self.create_trial_invite(
            CreateTrialInviteRequest(trial_days=7, invitee_name="Neighbor"), db, promoter,
        )
        assert created.status == TrialInviteStatus.PENDING

        listing = await promoter_self.list_trial_invites(
            page=1, per_page=20, status=None, search=None, db=db, promoter=promoter,
        )
        assert listing.total == 1
        assert listing.invites[0].code == created.code

        sent = await promoter_self.mark_trial_invite_sent(uuid.UUID(created.id), db, promoter)
        assert sent.status == TrialInviteStatus.SENT

    async def test_issue_denied_by_quota(self, db):
        promoter = make_promoter(db, trial_config={"can_issue_trial": False})
        await db.flush()
        with pytest.raises(DomainRuleViolation) as exc:
            await promoter_self.create_trial_invite(CreateTrialInviteRequest(), db, promoter)
        assert exc.value.reason == Reason.NOT_AUTHORIZED

    async def test_share_links(self, db):
        promoter = make_promoter(db)
        await db.flush()
        link = await promoter_self.create_share_link(
            CreateShareLinkRequest(channel=ShareChannel.EMAIL), db, promoter,
        )
        links = await promoter_self.list_share_links(db, promoter)
        assert [l.id for l in links] == [link.id]

    def test_ref_link_channel_not_creatable(self):
        with pytest.raises(ValidationError):
            CreateShareLinkRequest(channel=ShareChannel.REF_LINK)

    async def test_stats_include_quota(self, db):
        promoter = make_promoter(db, trial_config={"monthly_issue_limit": 3})
        await db.flush()
        with patch("growth.api.promoter_self.promoter_stats.get_promoter_stats",
                   new_callable=AsyncMock, return_value={"total_referrals": 0}):
            stats = await promoter_self.get_stats(db, promoter, session_factory=MagicMock())
        assert stats["quota"] == {
            "total_issued": 0,
            "month_issued": 0,
            "monthly_limit": 3,
            "total_limit": None,
            "can_issue_trial": True,
        }
