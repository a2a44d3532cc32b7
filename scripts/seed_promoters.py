"""
Seed a demo promoter program into the database: an admin, a trial plan,
one internal and one external promoter with share links and trial invites.

Usage:
    python scripts/seed_promoters.py
"""
import asyncio
import logging

from sqlalchemy import select

from growth.database import async_session_factory
from growth.models.promoter import Promoter, PromoterType, RewardType
from growth.models.share_link import ShareChannel
from growth.models.user import User
from growth.services import billing, promoters, trial_invites

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ADMIN_EMAIL = "admin@campaign.example.tw"

DEMO_PROMOTERS = [
    {
        "profile": {
            "name": "Field Office Lin",
            "email": "field.office@campaign.example.tw",
            "phone": "0912-000-101",
            "region": "Taipei",
            "organization": "Campaign HQ",
            "type": PromoterType.INTERNAL,
        },
        "reward_config": {"reward_type": RewardType.NONE},
        "trial_config": {"monthly_issue_limit": 200, "max_trial_days": 60},
        "channels": [ShareChannel.LINE, ShareChannel.QR_CODE],
        "invites": [14, 30],
    },
    {
        "profile": {
            "name": "Volunteer Chang",
            "email": "chang.volunteer@example.tw",
            "phone": "0922-000-202",
            "region": "Tainan",
            "organization": "Tainan Youth Volunteers",
            "type": PromoterType.EXTERNAL,
        },
        "reward_config": {"reward_type": RewardType.PERCENTAGE, "percentage": 10, "max_rewards_per_month": 20},
        "trial_config": {"monthly_issue_limit": 30, "total_issue_limit": 300},
        "channels": [ShareChannel.FACEBOOK],
        "invites": [7],
    },
]


async def _ensure_admin(session) -> User:
    result = await session.execute(select(User).where(User.email == ADMIN_EMAIL))
    admin = result.scalar_one_or_none()
    if admin:
        logger.info("Admin user already exists (id=%s). Skipping.", admin.id)
        return admin

    admin = User(name="Campaign Admin", email=ADMIN_EMAIL, is_admin=True, is_active=True)
    session.add(admin)
    await session.flush()
    logger.info("Seeded admin user: %s (id=%s)", admin.name, admin.id)
    return admin


async def seed():
    async with async_session_factory() as session:
        admin = await _ensure_admin(session)
        plan = await billing.get_trial_plan(session)
        logger.info("Trial plan: %s (id=%s)", plan.code, plan.id)

        for demo in DEMO_PROMOTERS:
            email = demo["profile"]["email"]
            existing = (await session.execute(
                select(Promoter.id).where(Promoter.email == email)
            )).scalar_one_or_none()
            if existing:
                logger.info("Promoter %s already exists (id=%s). Skipping.", email, existing)
                continue

            promoter = await promoters.create_promoter(
                session,
                demo["profile"],
                admin_id=admin.id,
                reward_config=demo["reward_config"],
                trial_config={**demo["trial_config"], "trial_plan_id": plan.id},
            )
            for channel in demo["channels"]:
                await promoters.create_share_link(
                    session, promoter.id, channel, "https://campaign.example.tw/join",
                )
            for days in demo["invites"]:
                await trial_invites.create_trial_invite(session, promoter.id, days)

            logger.info(
                "Seeded promoter: %s (code=%s, %d links, %d invites)",
                promoter.name, promoter.referral_code, len(demo["channels"]), len(demo["invites"]),
            )

        await session.commit()


if __name__ == "__main__":
    asyncio.run(seed())
