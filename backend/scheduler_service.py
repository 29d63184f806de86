"""
Scheduler for ZRS CRM background tasks
- Expired session / investor OTP cleanup every hour
- Follow-up reminders to lead owners every morning
"""

import logging
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import db, now_iso, SCHEDULER_TIMEZONE, SENDGRID_REMINDER_TEMPLATE_ID
from services.collaborators import Collaborators

logger = logging.getLogger("scheduler")

REMINDER_WINDOW_HOURS = 24


class TaskScheduler:
    """Scheduled task manager"""

    def __init__(self, timezone_name: str = SCHEDULER_TIMEZONE):
        self.scheduler = AsyncIOScheduler(timezone=timezone_name)
        self.collaborators: Optional[Collaborators] = None

    def start(self, collaborators: Collaborators):
        """Register every job and start the scheduler"""
        self.collaborators = collaborators

        # Expired sessions and OTPs, every hour
        self.scheduler.add_job(
            self.cleanup_expired_tokens,
            CronTrigger(minute=0),
            id="cleanup_expired_tokens",
            name="Expired token cleanup",
            replace_existing=True
        )

        # Follow-up reminders at 09:00 local time
        self.scheduler.add_job(
            self.dispatch_follow_up_reminders,
            CronTrigger(hour=9, minute=0),
            id="dispatch_follow_up_reminders",
            name="Follow-up reminders",
            replace_existing=True
        )

        self.scheduler.start()
        logger.info("[SCHEDULER] started")

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("[SCHEDULER] stopped")

    # ==================== SCHEDULED TASKS ====================

    async def cleanup_expired_tokens(self) -> Dict[str, int]:
        """Delete expired sessions and drop expired investor OTPs"""
        try:
            now = now_iso()
            sessions = await db.sessions.delete_many({"expires_at": {"$lt": now}})
            otps = await db.investors.update_many(
                {"otp.expires_at": {"$lt": now}},
                {"$unset": {"otp": ""}}
            )
            logger.info(
                f"[SCHEDULER] cleanup: {sessions.deleted_count} sessions, "
                f"{otps.modified_count} investor OTPs removed"
            )
            return {"sessions": sessions.deleted_count, "otps": otps.modified_count}
        except Exception as e:
            logger.error(f"[SCHEDULER] token cleanup failed: {str(e)}")
            return {"sessions": 0, "otps": 0}

    async def dispatch_follow_up_reminders(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Email the owner of every pending follow-up due in the next 24h, once"""
        now = now or datetime.now(timezone.utc)
        horizon = (now + timedelta(hours=REMINDER_WINDOW_HOURS)).isoformat()
        results = {"sent": 0, "failed": 0, "skipped": 0}

        try:
            due = await db.follow_ups.find(
                {"status": "pending", "reminder_sent_at": None, "due_date": {"$lte": horizon}},
                {"_id": 0}
            ).sort("due_date", 1).to_list(500)
        except Exception as e:
            logger.error(f"[SCHEDULER] follow-up lookup failed: {str(e)}")
            return results

        for follow_up in due:
            owner = await self._find_owner(follow_up.get("assigned_to"))
            if not owner or not owner.get("email"):
                results["skipped"] += 1
                continue

            lead = await db.leads.find_one(
                {"id": follow_up["lead_id"]},
                {"_id": 0, "lead_number": 1, "vehicle_info": 1, "contact_info": 1}
            ) or {}
            try:
                await self.collaborators.email.send_templated_email(
                    SENDGRID_REMINDER_TEMPLATE_ID,
                    {
                        "name": owner.get("name"),
                        "title": follow_up.get("title"),
                        "due_date": follow_up.get("due_date"),
                        "priority": follow_up.get("priority"),
                        "lead_number": lead.get("lead_number"),
                        "contact_name": (lead.get("contact_info") or {}).get("name"),
                    },
                    [{"email": owner["email"], "name": owner.get("name")}],
                )
            except Exception as e:
                logger.error(f"[SCHEDULER] reminder for follow-up {follow_up['id']} failed: {str(e)}")
                results["failed"] += 1
                continue

            await db.follow_ups.update_one(
                {"id": follow_up["id"], "reminder_sent_at": None},
                {"$set": {"reminder_sent_at": now_iso()}}
            )
            results["sent"] += 1

        logger.info(f"[SCHEDULER] follow-up reminders: {results}")
        return results

    async def _find_owner(self, user_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not user_id:
            return None
        for collection in ("managers", "admins"):
            user = await db[collection].find_one({"id": user_id}, {"_id": 0, "name": 1, "email": 1})
            if user:
                return user
        return None
