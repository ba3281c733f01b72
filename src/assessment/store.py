"""Persistence collaborator for the assessment pipeline.

The pipeline depends only on the narrow AssessmentStore interface. The
database-backed implementation lives with the web application; the in-memory
store here backs tests and local runs.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional, Union

from shared.errors import DataIntegrityError
from shared.logging import get_logger
from shared.models import (
    AssessmentContext,
    AssessmentResult,
    Journey,
    Leg,
    PassportDocument,
    Profile,
    Registration,
    RegistrationAnswer,
    RegistrationStatus,
    Requirement,
    parse_requirement,
)

logger = get_logger(__name__)


class AssessmentStore(ABC):
    """Rows the pipeline reads and writes."""

    @abstractmethod
    async def load_context(self, registration_id: str) -> AssessmentContext:
        """
        Load registration, journey, leg, owner, crew profile and requirements.

        Raises:
            DataIntegrityError: If any of the rows is missing
        """
        pass

    @abstractmethod
    async def has_ai_consent(self, user_id: str) -> bool:
        pass

    @abstractmethod
    async def get_answers(self, registration_id: str) -> list[RegistrationAnswer]:
        pass

    @abstractmethod
    async def get_passport_document(self, document_id: str) -> Optional[PassportDocument]:
        pass

    @abstractmethod
    async def upsert_result(self, result: AssessmentResult) -> None:
        """Insert or replace the row keyed by (registration_id, requirement_id)."""
        pass

    @abstractmethod
    async def set_results_passed(
        self,
        registration_id: str,
        requirement_ids: list[str],
        passed: bool
    ) -> None:
        pass

    @abstractmethod
    async def update_registration(
        self,
        registration_id: str,
        ai_match_score: int,
        ai_match_reasoning: str,
        status: Optional[RegistrationStatus] = None,
        auto_approved: Optional[bool] = None
    ) -> Registration:
        pass


class InMemoryAssessmentStore(AssessmentStore):
    """Dictionary-backed store with the same keys and upsert semantics as the database."""

    def __init__(self) -> None:
        self.registrations: dict[str, Registration] = {}
        self.journeys: dict[str, Journey] = {}
        self.legs: dict[str, Leg] = {}
        self.profiles: dict[str, Profile] = {}
        self.requirements: dict[str, list[Requirement]] = {}
        self.answers: dict[str, list[RegistrationAnswer]] = {}
        self.passports: dict[str, PassportDocument] = {}
        self.consents: dict[str, bool] = {}
        self.results: dict[tuple[str, str], AssessmentResult] = {}
        self._lock = asyncio.Lock()

    def add_requirement(self, requirement: Union[Requirement, dict[str, Any]]) -> Requirement:
        if isinstance(requirement, dict):
            requirement = parse_requirement(requirement)
        self.requirements.setdefault(requirement.journey_id, []).append(requirement)
        return requirement

    async def load_context(self, registration_id: str) -> AssessmentContext:
        registration = self.registrations.get(registration_id)
        if registration is None:
            raise DataIntegrityError("Registration", registration_id)

        leg = self.legs.get(registration.leg_id)
        if leg is None:
            raise DataIntegrityError("Leg", registration.leg_id)

        journey = self.journeys.get(leg.journey_id)
        if journey is None:
            raise DataIntegrityError("Journey", leg.journey_id)

        owner = self.profiles.get(journey.owner_id)
        if owner is None:
            raise DataIntegrityError("Owner profile", journey.owner_id)

        crew = self.profiles.get(registration.user_id)
        if crew is None:
            raise DataIntegrityError("Crew profile", registration.user_id)

        requirements = sorted(self.requirements.get(journey.id, []), key=lambda r: r.order)

        return AssessmentContext(
            registration=registration.model_copy(),
            journey=journey,
            leg=leg,
            owner=owner,
            crew=crew,
            requirements=requirements,
        )

    async def has_ai_consent(self, user_id: str) -> bool:
        return self.consents.get(user_id, False)

    async def get_answers(self, registration_id: str) -> list[RegistrationAnswer]:
        return list(self.answers.get(registration_id, []))

    async def get_passport_document(self, document_id: str) -> Optional[PassportDocument]:
        return self.passports.get(document_id)

    async def upsert_result(self, result: AssessmentResult) -> None:
        async with self._lock:
            self.results[(result.registration_id, result.requirement_id)] = result.model_copy()

    async def set_results_passed(
        self,
        registration_id: str,
        requirement_ids: list[str],
        passed: bool
    ) -> None:
        async with self._lock:
            for requirement_id in requirement_ids:
                key = (registration_id, requirement_id)
                if key in self.results:
                    self.results[key] = self.results[key].model_copy(update={"passed": passed})

    async def update_registration(
        self,
        registration_id: str,
        ai_match_score: int,
        ai_match_reasoning: str,
        status: Optional[RegistrationStatus] = None,
        auto_approved: Optional[bool] = None
    ) -> Registration:
        async with self._lock:
            registration = self.registrations.get(registration_id)
            if registration is None:
                raise DataIntegrityError("Registration", registration_id)

            update: dict[str, Any] = {
                "ai_match_score": ai_match_score,
                "ai_match_reasoning": ai_match_reasoning,
            }
            if status is not None:
                update["status"] = status
            if auto_approved is not None:
                update["auto_approved"] = auto_approved

            registration = registration.model_copy(update=update)
            self.registrations[registration_id] = registration

        logger.debug(
            "Registration updated",
            registration_id=registration_id,
            ai_match_score=ai_match_score,
            status=registration.status.value
        )
        return registration

    def results_for(self, registration_id: str) -> list[AssessmentResult]:
        return [r for (reg_id, _), r in self.results.items() if reg_id == registration_id]
