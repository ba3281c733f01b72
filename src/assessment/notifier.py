"""Notification collaborator for the assessment pipeline.

Delivery (in-app rows, email transport) belongs to the web application.
The pipeline calls the typed helpers below, which build Notification
records and hand them to `create_notification`.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from shared.logging import get_logger
from shared.models import Notification, NotificationType

logger = get_logger(__name__)


def owner_registration_link(registration_id: str) -> str:
    return f"/owner/registrations/{registration_id}"


CREW_REGISTRATIONS_LINK = "/crew/registrations"


class Notifier(ABC):
    """Sends in-app notifications and review emails."""

    @abstractmethod
    async def create_notification(self, notification: Notification) -> None:
        pass

    @abstractmethod
    async def send_review_needed_email(
        self,
        email: str,
        owner_id: str,
        crew_name: str,
        journey_name: str,
        score: Optional[int],
        link: str
    ) -> None:
        pass

    async def notify_manual_review_no_consent(
        self,
        owner_id: str,
        registration_id: str,
        crew_name: str,
        journey_name: str
    ) -> None:
        await self.create_notification(Notification(
            user_id=owner_id,
            type=NotificationType.AI_REVIEW_NEEDED,
            title="Manual Review Required",
            message=(
                f"{crew_name}'s registration for \"{journey_name}\" requires manual review. "
                "The crew member has not consented to AI processing."
            ),
            link=owner_registration_link(registration_id),
            metadata={
                "registration_id": registration_id,
                "crew_name": crew_name,
                "journey_name": journey_name,
                "reason": "no_ai_consent",
            },
        ))

    async def notify_registration_approved(
        self,
        crew_id: str,
        registration_id: str,
        journey_name: str,
        leg_name: str
    ) -> None:
        await self.create_notification(Notification(
            user_id=crew_id,
            type=NotificationType.REGISTRATION_APPROVED,
            title="Registration Approved",
            message=f"Your registration for {leg_name} on \"{journey_name}\" has been approved.",
            link=CREW_REGISTRATIONS_LINK,
            metadata={"registration_id": registration_id, "journey_name": journey_name, "leg_name": leg_name},
        ))

    async def notify_registration_pending(
        self,
        crew_id: str,
        registration_id: str,
        journey_name: str,
        leg_name: str
    ) -> None:
        await self.create_notification(Notification(
            user_id=crew_id,
            type=NotificationType.REGISTRATION_PENDING,
            title="Registration Under Review",
            message=(
                f"Your registration for {leg_name} on \"{journey_name}\" "
                "is pending review by the skipper."
            ),
            link=CREW_REGISTRATIONS_LINK,
            metadata={"registration_id": registration_id, "journey_name": journey_name, "leg_name": leg_name},
        ))

    async def notify_owner_auto_approved(
        self,
        owner_id: str,
        registration_id: str,
        crew_name: str,
        journey_name: str,
        score: int
    ) -> None:
        await self.create_notification(Notification(
            user_id=owner_id,
            type=NotificationType.AI_AUTO_APPROVED,
            title="Registration Auto-Approved",
            message=(
                f"{crew_name}'s registration for \"{journey_name}\" was automatically "
                f"approved by AI (Score: {score}%)"
            ),
            link=owner_registration_link(registration_id),
            metadata={"registration_id": registration_id, "crew_name": crew_name, "journey_name": journey_name},
        ))

    async def notify_owner_review_needed(
        self,
        owner_id: str,
        registration_id: str,
        crew_name: str,
        journey_name: str,
        score: int
    ) -> None:
        await self.create_notification(Notification(
            user_id=owner_id,
            type=NotificationType.AI_REVIEW_NEEDED,
            title="Registration Needs Review",
            message=(
                f"{crew_name}'s registration for \"{journey_name}\" needs your review "
                f"(AI Score: {score}%)"
            ),
            link=owner_registration_link(registration_id),
            metadata={"registration_id": registration_id, "crew_name": crew_name, "journey_name": journey_name},
        ))


class RecordingNotifier(Notifier):
    """Keeps every notification and email in memory."""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []
        self.emails: list[dict[str, Any]] = []

    async def create_notification(self, notification: Notification) -> None:
        self.notifications.append(notification)
        logger.info(
            "Notification created",
            user=notification.user_id,
            type=notification.type.value,
            title=notification.title
        )

    async def send_review_needed_email(
        self,
        email: str,
        owner_id: str,
        crew_name: str,
        journey_name: str,
        score: Optional[int],
        link: str
    ) -> None:
        self.emails.append({
            "email": email,
            "owner_id": owner_id,
            "crew_name": crew_name,
            "journey_name": journey_name,
            "score": score,
            "link": link,
        })
        logger.info("Review email queued", owner=owner_id, journey=journey_name)

    def of_type(self, notification_type: NotificationType) -> list[Notification]:
        return [n for n in self.notifications if n.type == notification_type]
