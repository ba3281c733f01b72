"""Tool execution backends.

A backend only runs tools; access checks, argument validation and the
approval gate for action tools happen before it is called.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from shared.errors import ConfigurationError, DataIntegrityError, SailMatchError, ToolPermissionError
from shared.logging import get_logger
from shared.models import (
    Boat,
    Journey,
    Leg,
    Location,
    Profile,
    Registration,
    RegistrationAnswer,
    RegistrationStatus,
    Requirement,
    UserContext,
)
from assessment.prechecks import (
    EXPERIENCE_LEVEL_NAMES,
    RISK_LEVELS,
    check_experience_level,
    check_risk_level,
    normalize_levels,
)
from assessment.store import InMemoryAssessmentStore

logger = get_logger(__name__)

DEFAULT_LIMIT = 10

EXPERIENCE_LEVEL_DESCRIPTIONS = {
    1: "New to sailing; keen to learn and help on deck.",
    2: "Can steer, trim sails and stand watches under supervision.",
    3: "Can skipper a yacht on coastal passages by day and night.",
    4: "Can skipper offshore passages far from safe haven.",
}

RISK_LEVEL_DESCRIPTIONS = {
    "Coastal sailing": "Day sailing and short hops close to shore and shelter.",
    "Offshore sailing": "Multi-day passages out of sight of land.",
    "Extreme sailing": "High latitudes, ocean crossings or heavy-weather routes.",
}

SKILLS = (
    "Navigation",
    "Helming",
    "Sail trim",
    "Night watch",
    "Cooking",
    "First aid",
    "Diesel engine maintenance",
    "Radio (VHF/SSB)",
    "Weather routing",
    "Anchoring",
    "Photography",
)

# Accepted update_user_profile keys and the profile fields they set
# Fields that count towards profile completion
COMPLETION_FIELDS = ("full_name", "user_description", "experience_level", "risk_level", "skills")

DEFAULT_BOAT_LIMIT = 50

PROFILE_FIELDS = {
    "fullName": "full_name",
    "userDescription": "user_description",
    "sailingExperience": "experience_level",
    "riskLevel": "risk_level",
    "skills": "skills",
    "certifications": "certifications",
    "sailingPreferences": "sailing_preferences",
}

RegistrationHook = Callable[[Registration, list[RegistrationAnswer]], Awaitable[Any]]


class ToolBackend(ABC):
    """Executes data and action tools against the store."""

    @abstractmethod
    async def execute(self, tool_name: str, arguments: dict[str, Any], user: UserContext) -> Any:
        """
        Run one tool.

        Raises:
            DataIntegrityError: If a referenced row does not exist
            ToolPermissionError: If the caller does not own the referenced row
            SailMatchError: For any other refusal
        """
        pass


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        raise SailMatchError(f"Invalid date '{value}', expected YYYY-MM-DD")


def _in_bbox(location: Optional[Location], bbox: Optional[dict[str, float]]) -> bool:
    if bbox is None:
        return True
    if location is None:
        return False
    return (
        bbox["minLng"] <= location.lng <= bbox["maxLng"]
        and bbox["minLat"] <= location.lat <= bbox["maxLat"]
    )


def _requirement_info(requirement: Requirement) -> dict[str, Any]:
    info: dict[str, Any] = {
        "id": requirement.id,
        "type": requirement.type,
        "is_required": requirement.is_required,
    }
    for field in ("question_text", "skill_name", "qualification_criteria"):
        value = getattr(requirement, field, None)
        if value:
            info[field] = value
    return info


class InMemoryToolBackend(ToolBackend):
    """
    Runs the tool catalogue over an InMemoryAssessmentStore plus boats.

    Registrations created here go through `on_registration`, which the API
    wires to the assessment pipeline with the just-written answers.
    """

    def __init__(
        self,
        store: InMemoryAssessmentStore,
        boats: Optional[dict[str, Boat]] = None,
        on_registration: Optional[RegistrationHook] = None
    ) -> None:
        self.store = store
        self.boats: dict[str, Boat] = boats if boats is not None else {}
        self.on_registration = on_registration
        self.accepted_suggestions: list[dict[str, Any]] = []

    async def execute(self, tool_name: str, arguments: dict[str, Any], user: UserContext) -> Any:
        handler = getattr(self, f"_tool_{tool_name}", None)
        if handler is None:
            raise ConfigurationError(f"No backend handler for tool '{tool_name}'")
        return await handler(arguments, user)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _leg(self, leg_id: str) -> Leg:
        leg = self.store.legs.get(leg_id)
        if leg is None:
            raise DataIntegrityError("Leg", leg_id)
        return leg

    def _journey(self, journey_id: str) -> Journey:
        journey = self.store.journeys.get(journey_id)
        if journey is None:
            raise DataIntegrityError("Journey", journey_id)
        return journey

    def _profile(self, user: UserContext) -> Profile:
        profile = self.store.profiles.get(user.user_id or "")
        if profile is None:
            raise DataIntegrityError("Profile", user.user_id)
        return profile

    def _registration(self, registration_id: str) -> Registration:
        registration = self.store.registrations.get(registration_id)
        if registration is None:
            raise DataIntegrityError("Registration", registration_id)
        return registration

    def _require_owner(self, tool_name: str, journey: Journey, user: UserContext) -> None:
        if journey.owner_id != user.user_id:
            raise ToolPermissionError(tool_name, "you do not own this journey")

    def _leg_summary(self, leg: Leg) -> dict[str, Any]:
        journey = self.store.journeys.get(leg.journey_id)
        return {
            "id": leg.id,
            "name": leg.name,
            "journey_id": leg.journey_id,
            "journey_name": journey.name if journey else None,
            "start_date": leg.start_date.isoformat() if leg.start_date else None,
            "end_date": leg.end_date.isoformat() if leg.end_date else None,
            "start_location": leg.start_location.model_dump() if leg.start_location else None,
            "end_location": leg.end_location.model_dump() if leg.end_location else None,
            "skills": leg.skills,
            "crew_needed": leg.crew_needed,
            "risk_level": sorted(normalize_levels(journey.risk_level)) if journey else [],
        }

    def _journey_summary(self, journey: Journey) -> dict[str, Any]:
        boat = self.boats.get(journey.boat_id or "")
        return {
            "id": journey.id,
            "name": journey.name,
            "state": journey.state,
            "description": journey.description,
            "start_date": journey.start_date.isoformat() if journey.start_date else None,
            "end_date": journey.end_date.isoformat() if journey.end_date else None,
            "risk_level": sorted(normalize_levels(journey.risk_level)),
            "min_experience_level": journey.min_experience_level,
            "boat": boat.model_dump() if boat else None,
        }

    def _published_legs(self) -> list[Leg]:
        legs = []
        for leg in self.store.legs.values():
            journey = self.store.journeys.get(leg.journey_id)
            if journey is not None and journey.state == "Published":
                legs.append(leg)
        return sorted(legs, key=lambda l: (l.start_date or date.max, l.name))

    def _filter_legs(self, legs: list[Leg], arguments: dict[str, Any]) -> list[Leg]:
        start = _parse_date(arguments.get("startDate"))
        end = _parse_date(arguments.get("endDate"))
        skills = {s.lower() for s in arguments.get("skills") or []}
        crew_needed = arguments.get("crewNeeded")
        boat_type = (arguments.get("boatType") or "").lower()
        risk_levels = set(arguments.get("riskLevels") or [])

        matched = []
        for leg in legs:
            journey = self.store.journeys[leg.journey_id]
            if arguments.get("journeyId") and leg.journey_id != arguments["journeyId"]:
                continue
            if start and (leg.start_date is None or leg.start_date < start):
                continue
            if end and (leg.end_date is None or leg.end_date > end):
                continue
            if skills and not skills & {s.lower() for s in leg.skills}:
                continue
            if crew_needed and (leg.crew_needed or 0) < crew_needed:
                continue
            if boat_type:
                boat = self.boats.get(journey.boat_id or "")
                if boat is None or (boat.type or "").lower() != boat_type:
                    continue
            if risk_levels and not risk_levels & normalize_levels(journey.risk_level):
                continue
            matched.append(leg)
        return matched

    def _match_analysis(self, profile: Profile, leg: Leg) -> dict[str, Any]:
        journey = self._journey(leg.journey_id)
        risk = check_risk_level(journey.risk_level, profile.risk_level)
        experience = check_experience_level(
            profile.experience_level,
            leg.min_experience_level or journey.min_experience_level,
        )
        crew_skills = {str(s).lower() for s in profile.skills}
        return {
            "leg": self._leg_summary(leg),
            "risk_level": risk.model_dump(),
            "experience_level": experience.model_dump(),
            "matching_skills": [s for s in leg.skills if s.lower() in crew_skills],
            "missing_skills": [s for s in leg.skills if s.lower() not in crew_skills],
            "eligible": risk.passed and experience.passed,
        }

    # ------------------------------------------------------------------
    # Public data tools
    # ------------------------------------------------------------------

    async def _tool_search_legs(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        legs = self._filter_legs(self._published_legs(), arguments)
        limit = arguments.get("limit", DEFAULT_LIMIT)
        return {"legs": [self._leg_summary(leg) for leg in legs[:limit]], "total": len(legs)}

    async def _tool_search_legs_by_location(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        departure = arguments.get("departureBbox")
        arrival = arguments.get("arrivalBbox")
        legs = [
            leg for leg in self._filter_legs(self._published_legs(), arguments)
            if _in_bbox(leg.start_location, departure) and _in_bbox(leg.end_location, arrival)
        ]
        limit = arguments.get("limit", DEFAULT_LIMIT)
        return {"legs": [self._leg_summary(leg) for leg in legs[:limit]], "total": len(legs)}

    async def _tool_search_journeys(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        start = _parse_date(arguments.get("startDate"))
        end = _parse_date(arguments.get("endDate"))
        risk_level = arguments.get("riskLevel")
        boat_type = (arguments.get("boatType") or "").lower()

        journeys = []
        for journey in self.store.journeys.values():
            if journey.state != "Published":
                continue
            if start and (journey.start_date is None or journey.start_date < start):
                continue
            if end and (journey.end_date is None or journey.end_date > end):
                continue
            if risk_level and risk_level not in normalize_levels(journey.risk_level):
                continue
            if boat_type:
                boat = self.boats.get(journey.boat_id or "")
                if boat is None or (boat.type or "").lower() != boat_type:
                    continue
            journeys.append(journey)

        limit = arguments.get("limit", DEFAULT_LIMIT)
        return {
            "journeys": [self._journey_summary(j) for j in journeys[:limit]],
            "total": len(journeys),
        }

    async def _tool_get_leg_details(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        leg = self._leg(arguments["legId"])
        details = self._leg_summary(leg)
        details["description"] = leg.description
        details["min_experience_level"] = leg.min_experience_level
        details["requirements"] = [
            _requirement_info(r) for r in self.store.requirements.get(leg.journey_id, [])
        ]
        return {"leg": details}

    async def _tool_get_journey_details(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        journey = self._journey(arguments["journeyId"])
        legs = [leg for leg in self._published_legs() if leg.journey_id == journey.id]
        return {
            "journey": self._journey_summary(journey),
            "legs": [self._leg_summary(leg) for leg in legs],
        }

    async def _tool_get_boat_details(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        boat = self.boats.get(arguments["boatId"])
        if boat is None:
            raise DataIntegrityError("Boat", arguments["boatId"])
        return {"boat": boat.model_dump()}

    async def _tool_get_experience_level_definitions(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return {
            "levels": [
                {"level": level, "name": name, "description": EXPERIENCE_LEVEL_DESCRIPTIONS[level]}
                for level, name in EXPERIENCE_LEVEL_NAMES.items()
            ]
        }

    async def _tool_get_risk_level_definitions(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return {
            "levels": [
                {"name": name, "description": RISK_LEVEL_DESCRIPTIONS[name]} for name in RISK_LEVELS
            ]
        }

    async def _tool_get_skills_definitions(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return {"skills": list(SKILLS)}

    # ------------------------------------------------------------------
    # Authenticated tools
    # ------------------------------------------------------------------

    async def _tool_get_user_profile(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return {"profile": self._profile(user).model_dump()}

    async def _tool_get_profile_completion_status(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        profile = self._profile(user)
        filled = [field for field in COMPLETION_FIELDS if getattr(profile, field)]
        missing = [field for field in COMPLETION_FIELDS if field not in filled]
        return {
            "filled_fields": filled,
            "missing_fields": missing,
            "completion_percentage": round(len(filled) * 100 / len(COMPLETION_FIELDS)),
        }

    async def _tool_get_user_registrations(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        status = arguments.get("status")
        registrations = [
            r for r in self.store.registrations.values()
            if r.user_id == user.user_id and (status is None or r.status.value == status)
        ]
        limit = arguments.get("limit", DEFAULT_LIMIT)
        return {
            "registrations": [
                {
                    "id": r.id,
                    "status": r.status.value,
                    "leg": self._leg_summary(self._leg(r.leg_id)),
                    "ai_match_score": r.ai_match_score,
                }
                for r in registrations[:limit]
            ],
            "total": len(registrations),
        }

    async def _tool_analyze_leg_match(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return self._match_analysis(self._profile(user), self._leg(arguments["legId"]))

    async def _tool_get_leg_registration_info(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        leg = self._leg(arguments["legId"])
        existing = [
            r for r in self.store.registrations.values()
            if r.leg_id == leg.id and r.user_id == user.user_id and r.status != RegistrationStatus.CANCELLED
        ]
        return {
            "leg": self._leg_summary(leg),
            "requirements": [
                _requirement_info(r) for r in self.store.requirements.get(leg.journey_id, [])
            ],
            "already_registered": bool(existing),
        }

    async def _tool_fetch_all_boats(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        if "owner" in user.roles:
            boats = [b for b in self.boats.values() if b.owner_id == user.user_id]
        else:
            published = {
                j.boat_id for j in self.store.journeys.values() if j.state == "Published" and j.boat_id
            }
            boats = [b for b in self.boats.values() if b.id in published]

        boat_type = arguments.get("boatType")
        home_port = (arguments.get("homePort") or "").lower()
        make_model = (arguments.get("makeModel") or "").lower()
        boats = [
            b for b in boats
            if (not boat_type or b.type == boat_type)
            and (not home_port or home_port in (b.home_port or "").lower())
            and (not make_model or make_model in (b.make_model or "").lower())
        ]

        limit = arguments.get("limit", DEFAULT_BOAT_LIMIT)
        return {"boats": [b.model_dump() for b in boats[:limit]], "total": len(boats)}

    async def _tool_update_user_profile(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        profile = self._profile(user)
        update = {PROFILE_FIELDS[key]: value for key, value in arguments.items() if key in PROFILE_FIELDS}
        if not update:
            raise SailMatchError("No profile fields to update")

        profile = profile.model_copy(update=update)
        self.store.profiles[profile.id] = profile
        logger.info("Profile updated", user=user.user_id, fields=sorted(update))
        return {"profile": profile.model_dump(), "updated_fields": sorted(arguments)}

    # ------------------------------------------------------------------
    # Crew tools
    # ------------------------------------------------------------------

    async def _register(
        self,
        leg_id: str,
        user: UserContext,
        answers: list[RegistrationAnswer]
    ) -> dict[str, Any]:
        leg = self._leg(leg_id)
        self._profile(user)

        for registration in self.store.registrations.values():
            if (
                registration.leg_id == leg.id
                and registration.user_id == user.user_id
                and registration.status != RegistrationStatus.CANCELLED
            ):
                raise SailMatchError(f"Already registered for leg '{leg.name}'")

        registration = Registration(id=str(uuid.uuid4()), user_id=user.user_id, leg_id=leg.id)
        self.store.registrations[registration.id] = registration
        self.store.answers[registration.id] = answers
        logger.info("Registration created", registration_id=registration.id, leg_id=leg.id, user=user.user_id)

        result: dict[str, Any] = {
            "registration": {"id": registration.id, "leg_id": leg.id, "status": registration.status.value}
        }
        if self.on_registration is not None:
            outcome = await self.on_registration(registration, answers)
            if outcome is not None:
                result["assessment"] = outcome.model_dump(mode="json") if isinstance(outcome, BaseModel) else outcome
        return result

    async def _tool_suggest_register_for_leg(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return await self._register(arguments["legId"], user, [])

    async def _tool_submit_leg_registration(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        answers = [RegistrationAnswer(**answer) for answer in arguments.get("answers", [])]
        return await self._register(arguments["legId"], user, answers)

    async def _accept_suggestion(self, tool_name: str, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        suggestion = {"tool": tool_name, "user_id": user.user_id, **arguments}
        self.accepted_suggestions.append(suggestion)
        return {"accepted": True, "suggestion": suggestion}

    async def _tool_suggest_profile_update_user_description(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return await self._accept_suggestion("suggest_profile_update_user_description", arguments, user)

    async def _tool_suggest_profile_update_certifications(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return await self._accept_suggestion("suggest_profile_update_certifications", arguments, user)

    async def _tool_suggest_profile_update_risk_level(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return await self._accept_suggestion("suggest_profile_update_risk_level", arguments, user)

    async def _tool_suggest_profile_update_sailing_preferences(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return await self._accept_suggestion("suggest_profile_update_sailing_preferences", arguments, user)

    async def _tool_suggest_skills_refinement(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return await self._accept_suggestion("suggest_skills_refinement", arguments, user)

    # ------------------------------------------------------------------
    # Owner tools
    # ------------------------------------------------------------------

    async def _tool_get_owner_boats(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        boats = [b.model_dump() for b in self.boats.values() if b.owner_id == user.user_id]
        return {"boats": boats, "total": len(boats)}

    async def _tool_get_owner_journeys(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        journeys = [
            j for j in self.store.journeys.values()
            if j.owner_id == user.user_id
            and (not arguments.get("boatId") or j.boat_id == arguments["boatId"])
            and (not arguments.get("state") or j.state == arguments["state"])
        ]
        return {"journeys": [self._journey_summary(j) for j in journeys], "total": len(journeys)}

    async def _tool_get_leg_registrations(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        leg = self._leg(arguments["legId"])
        self._require_owner("get_leg_registrations", self._journey(leg.journey_id), user)

        registrations = []
        for registration in self.store.registrations.values():
            if registration.leg_id != leg.id:
                continue
            crew = self.store.profiles.get(registration.user_id)
            registrations.append({
                "id": registration.id,
                "crew_name": crew.display_name if crew else None,
                "status": registration.status.value,
                "ai_match_score": registration.ai_match_score,
                "auto_approved": registration.auto_approved,
            })
        return {"leg": self._leg_summary(leg), "registrations": registrations}

    async def _tool_analyze_crew_match(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        registration = self._registration(arguments["registrationId"])
        leg = self._leg(registration.leg_id)
        self._require_owner("analyze_crew_match", self._journey(leg.journey_id), user)

        crew = self.store.profiles.get(registration.user_id)
        if crew is None:
            raise DataIntegrityError("Crew profile", registration.user_id)

        analysis = self._match_analysis(crew, leg)
        analysis["crew_name"] = crew.display_name
        analysis["ai_match_score"] = registration.ai_match_score
        analysis["ai_match_reasoning"] = registration.ai_match_reasoning
        return analysis

    async def _set_registration_status(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        user: UserContext,
        status: RegistrationStatus
    ) -> dict[str, Any]:
        registration = self._registration(arguments["registrationId"])
        leg = self._leg(registration.leg_id)
        self._require_owner(tool_name, self._journey(leg.journey_id), user)

        registration = registration.model_copy(update={"status": status})
        self.store.registrations[registration.id] = registration
        logger.info("Registration status changed", registration_id=registration.id, status=status.value)
        return {"registration": {"id": registration.id, "status": status.value}, "reason": arguments.get("reason")}

    async def _tool_suggest_approve_registration(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return await self._set_registration_status(
            "suggest_approve_registration", arguments, user, RegistrationStatus.APPROVED
        )

    async def _tool_suggest_reject_registration(self, arguments: dict[str, Any], user: UserContext) -> dict[str, Any]:
        return await self._set_registration_status(
            "suggest_reject_registration", arguments, user, RegistrationStatus.NOT_APPROVED
        )
