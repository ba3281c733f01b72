"""Static tool catalogue for the sailing assistant.

Data tools read from the store and run immediately. Action tools mutate
state and are only surfaced as pending actions until the caller approves
them explicitly.
"""

from typing import Any

from shared.models import ToolAccess, ToolCategory, ToolDefinition

DATE_FORMAT_HINT = "ISO date (YYYY-MM-DD)"

BOAT_TYPES = (
    "Daysailers",
    "Coastal cruisers",
    "Traditional offshore cruisers",
    "Performance cruisers",
    "Multihulls",
    "Expedition sailboats",
)


def _object(properties: dict[str, Any], required: tuple[str, ...] = ()) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": list(required)}


_STRING = {"type": "string"}
_LIMIT = {"type": "integer", "minimum": 1, "maximum": 50, "description": "Maximum results (default 10)"}

_BBOX = _object(
    {
        "minLng": {"type": "number", "minimum": -180, "maximum": 180},
        "minLat": {"type": "number", "minimum": -90, "maximum": 90},
        "maxLng": {"type": "number", "minimum": -180, "maximum": 180},
        "maxLat": {"type": "number", "minimum": -90, "maximum": 90},
    },
    ("minLng", "minLat", "maxLng", "maxLat"),
)

_SUGGESTION = _object(
    {
        "reason": {"type": "string", "description": "Why this change helps the user"},
        "suggestedField": {"type": "string", "description": "Profile field to update"},
    },
    ("reason", "suggestedField"),
)


TOOL_DEFINITIONS: list[ToolDefinition] = [
    # Public data tools
    ToolDefinition(
        name="search_legs",
        description=(
            "Search published sailing legs by date, skills and crew need. "
            "Returns legs with their journey, dates and route."
        ),
        parameters=_object({
            "journeyId": _STRING,
            "startDate": {"type": "string", "description": DATE_FORMAT_HINT},
            "endDate": {"type": "string", "description": DATE_FORMAT_HINT},
            "skills": {"type": "array", "items": _STRING},
            "crewNeeded": {"type": "integer", "minimum": 1},
            "boatType": _STRING,
            "limit": _LIMIT,
        }),
    ),
    ToolDefinition(
        name="search_legs_by_location",
        description=(
            "Search legs departing from and/or arriving in a bounding box. "
            "Copy bounding boxes exactly from the location context when one is given."
        ),
        parameters=_object({
            "departureBbox": _BBOX,
            "arrivalBbox": _BBOX,
            "startDate": {"type": "string", "description": DATE_FORMAT_HINT},
            "endDate": {"type": "string", "description": DATE_FORMAT_HINT},
            "skills": {"type": "array", "items": _STRING},
            "riskLevels": {"type": "array", "items": _STRING},
            "crewNeeded": {"type": "integer", "minimum": 1},
            "boatType": _STRING,
            "limit": _LIMIT,
        }),
    ),
    ToolDefinition(
        name="search_journeys",
        description="Search published journeys by date range, risk level and boat type.",
        parameters=_object({
            "startDate": {"type": "string", "description": DATE_FORMAT_HINT},
            "endDate": {"type": "string", "description": DATE_FORMAT_HINT},
            "riskLevel": _STRING,
            "boatType": _STRING,
            "limit": _LIMIT,
        }),
    ),
    ToolDefinition(
        name="get_leg_details",
        description="Get full details of one leg including waypoints and requirements.",
        parameters=_object({"legId": _STRING}, ("legId",)),
    ),
    ToolDefinition(
        name="get_journey_details",
        description="Get full details of one journey including all of its legs.",
        parameters=_object({"journeyId": _STRING}, ("journeyId",)),
    ),
    ToolDefinition(
        name="get_boat_details",
        description="Get details of one boat (type, length, home port).",
        parameters=_object({"boatId": _STRING}, ("boatId",)),
    ),
    ToolDefinition(
        name="get_experience_level_definitions",
        description="List the four sailing experience levels and what each means.",
    ),
    ToolDefinition(
        name="get_risk_level_definitions",
        description="List the sailing risk levels (coastal, offshore, extreme).",
    ),
    ToolDefinition(
        name="get_skills_definitions",
        description="List the sailing skills crew can declare on their profile.",
    ),
    # Authenticated data tools
    ToolDefinition(
        name="get_user_profile",
        description="Get the signed-in user's profile.",
        access=ToolAccess.AUTHENTICATED,
    ),
    ToolDefinition(
        name="get_profile_completion_status",
        description=(
            "Show which profile fields the signed-in user has filled and which are "
            "still missing, with a completion percentage."
        ),
        access=ToolAccess.AUTHENTICATED,
    ),
    ToolDefinition(
        name="get_user_registrations",
        description="List the signed-in user's leg registrations.",
        access=ToolAccess.AUTHENTICATED,
        parameters=_object({
            "status": {
                "type": "string",
                "enum": ["Pending approval", "Approved", "Not approved", "Cancelled"],
            },
            "limit": _LIMIT,
        }),
    ),
    ToolDefinition(
        name="analyze_leg_match",
        description="Compare the signed-in user's profile against one leg's requirements.",
        access=ToolAccess.AUTHENTICATED,
        parameters=_object({"legId": _STRING}, ("legId",)),
    ),
    ToolDefinition(
        name="get_leg_registration_info",
        description="Get the registration questions and requirements for one leg.",
        access=ToolAccess.AUTHENTICATED,
        parameters=_object({"legId": _STRING}, ("legId",)),
    ),
    ToolDefinition(
        name="fetch_all_boats",
        description=(
            "List boats visible to the signed-in user: an owner's own boats, or "
            "for crew every boat with a published journey."
        ),
        access=ToolAccess.AUTHENTICATED,
        parameters=_object({
            "boatType": {"type": "string", "enum": list(BOAT_TYPES)},
            "homePort": {"type": "string", "description": "Case-insensitive partial match"},
            "makeModel": {"type": "string", "description": "Case-insensitive partial match, e.g. \"Hallberg-Rassy\""},
            "limit": {"type": "integer", "minimum": 1, "maximum": 100, "description": "Maximum results (default 50)"},
        }),
    ),
    # Authenticated action tools
    ToolDefinition(
        name="update_user_profile",
        description="Update fields on the signed-in user's profile.",
        access=ToolAccess.AUTHENTICATED,
        category=ToolCategory.ACTION,
        label="Update profile",
        parameters=_object({
            "fullName": _STRING,
            "userDescription": _STRING,
            "sailingExperience": {"type": "integer", "minimum": 1, "maximum": 4},
            "riskLevel": {"type": "array", "items": _STRING},
            "skills": {"type": "array", "items": _STRING},
            "certifications": _STRING,
            "sailingPreferences": _STRING,
        }),
    ),
    # Crew action tools
    ToolDefinition(
        name="suggest_register_for_leg",
        description="Suggest that the crew member registers for a leg.",
        access=ToolAccess.CREW,
        category=ToolCategory.ACTION,
        label="Register for leg",
        parameters=_object(
            {"legId": _STRING, "reason": _STRING},
            ("legId", "reason"),
        ),
    ),
    ToolDefinition(
        name="submit_leg_registration",
        description="Submit a registration for a leg together with answers to its questions.",
        access=ToolAccess.CREW,
        category=ToolCategory.ACTION,
        label="Submit registration",
        parameters=_object(
            {
                "legId": _STRING,
                "answers": {
                    "type": "array",
                    "items": _object(
                        {
                            "requirement_id": _STRING,
                            "answer_text": _STRING,
                            "answer_json": {},
                        },
                        ("requirement_id",),
                    ),
                },
                "notes": _STRING,
            },
            ("legId", "answers"),
        ),
    ),
    ToolDefinition(
        name="suggest_profile_update_user_description",
        description="Suggest improving the crew member's profile description.",
        access=ToolAccess.CREW,
        category=ToolCategory.ACTION,
        label="Update profile description",
        parameters=_SUGGESTION,
    ),
    ToolDefinition(
        name="suggest_profile_update_certifications",
        description="Suggest adding or updating sailing certifications.",
        access=ToolAccess.CREW,
        category=ToolCategory.ACTION,
        label="Update certifications",
        parameters=_SUGGESTION,
    ),
    ToolDefinition(
        name="suggest_profile_update_risk_level",
        description="Suggest changing the crew member's accepted risk levels.",
        access=ToolAccess.CREW,
        category=ToolCategory.ACTION,
        label="Update risk levels",
        parameters=_SUGGESTION,
    ),
    ToolDefinition(
        name="suggest_profile_update_sailing_preferences",
        description="Suggest describing the crew member's sailing preferences in more detail.",
        access=ToolAccess.CREW,
        category=ToolCategory.ACTION,
        label="Update sailing preferences",
        parameters=_object(
            {
                "reason": _STRING,
                "suggestedField": {"type": "string", "enum": ["sailing_preferences"]},
            },
            ("reason", "suggestedField"),
        ),
    ),
    ToolDefinition(
        name="suggest_skills_refinement",
        description="Suggest refining specific skills on the crew member's profile.",
        access=ToolAccess.CREW,
        category=ToolCategory.ACTION,
        label="Refine skills",
        parameters=_object(
            {
                "reason": _STRING,
                "suggestedField": _STRING,
                "targetSkills": {"type": "array", "items": _STRING, "minItems": 1},
            },
            ("reason", "suggestedField", "targetSkills"),
        ),
    ),
    # Owner data tools
    ToolDefinition(
        name="get_owner_boats",
        description="List the boats owned by the signed-in owner.",
        access=ToolAccess.OWNER,
    ),
    ToolDefinition(
        name="get_owner_journeys",
        description="List the signed-in owner's journeys, optionally for one boat or state.",
        access=ToolAccess.OWNER,
        parameters=_object({
            "boatId": _STRING,
            "state": {"type": "string", "enum": ["In planning", "Published", "Archived"]},
        }),
    ),
    ToolDefinition(
        name="get_leg_registrations",
        description="List registrations for one of the owner's legs.",
        access=ToolAccess.OWNER,
        parameters=_object({"legId": _STRING}, ("legId",)),
    ),
    ToolDefinition(
        name="analyze_crew_match",
        description="Compare a registered crew member's profile against the leg they applied for.",
        access=ToolAccess.OWNER,
        parameters=_object({"registrationId": _STRING}, ("registrationId",)),
    ),
    # Owner action tools
    ToolDefinition(
        name="suggest_approve_registration",
        description="Suggest approving a crew registration on one of the owner's legs.",
        access=ToolAccess.OWNER,
        category=ToolCategory.ACTION,
        label="Approve registration",
        parameters=_object(
            {"registrationId": _STRING, "reason": _STRING},
            ("registrationId", "reason"),
        ),
    ),
    ToolDefinition(
        name="suggest_reject_registration",
        description="Suggest declining a crew registration on one of the owner's legs.",
        access=ToolAccess.OWNER,
        category=ToolCategory.ACTION,
        label="Decline registration",
        parameters=_object(
            {"registrationId": _STRING, "reason": _STRING},
            ("registrationId", "reason"),
        ),
    ),
]

# Tools whose results carry legs that the model may cite
LEG_SEARCH_TOOLS = frozenset({"search_legs", "search_legs_by_location"})
