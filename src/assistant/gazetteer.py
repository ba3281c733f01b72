"""Named sailing regions and their bounding boxes.

Free-text place names are matched against region names and aliases
(case-insensitive, whole words only) so the assistant can hand the model
exact coordinates instead of letting it derive them.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class BoundingBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_lng: float = Field(..., alias="minLng", ge=-180, le=180)
    min_lat: float = Field(..., alias="minLat", ge=-90, le=90)
    max_lng: float = Field(..., alias="maxLng", ge=-180, le=180)
    max_lat: float = Field(..., alias="maxLat", ge=-90, le=90)

    def as_dict(self) -> dict[str, float]:
        """The camelCase shape the search tools accept."""
        return self.model_dump(by_alias=True)

    @property
    def center(self) -> tuple[float, float]:
        return (self.min_lat + self.max_lat) / 2, (self.min_lng + self.max_lng) / 2


class Region(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    aliases: tuple[str, ...] = ()
    category: str
    bbox: BoundingBox


class LocationMatch(BaseModel):
    region: Region
    matched_on: str  # "name" or "alias"
    matched_term: str


def _region(
    name: str,
    category: str,
    bbox: tuple[float, float, float, float],
    *aliases: str
) -> Region:
    min_lng, min_lat, max_lng, max_lat = bbox
    return Region(
        name=name,
        aliases=aliases,
        category=category,
        bbox=BoundingBox(minLng=min_lng, minLat=min_lat, maxLng=max_lng, maxLat=max_lat),
    )


# bbox order: (min_lng, min_lat, max_lng, max_lat)
REGIONS: tuple[Region, ...] = (
    # Mediterranean
    _region("Mediterranean", "mediterranean", (-6, 30, 36, 46),
            "med", "the med", "mediterranean sea", "med sea"),
    _region("Western Mediterranean", "mediterranean", (-6, 35, 10, 44.5),
            "western med", "west med"),
    _region("Eastern Mediterranean", "mediterranean", (10, 32, 36, 43),
            "eastern med", "east med", "levant"),
    _region("Balearic Islands", "mediterranean", (1.0, 38.5, 4.5, 40.5),
            "balearics", "mallorca", "majorca", "ibiza", "menorca", "formentera"),
    _region("Barcelona area", "mediterranean", (1.5, 41.0, 2.5, 41.8),
            "barcelona", "catalonia", "port olimpic"),
    _region("Costa Brava", "mediterranean", (2.4, 41.6, 3.5, 42.4),
            "catalan coast", "cadaques", "roses", "palamos", "cap de creus"),
    _region("Costa Blanca", "mediterranean", (-0.9, 37.8, 0.4, 39.0),
            "alicante", "denia", "javea", "altea", "torrevieja"),
    _region("French Riviera", "mediterranean", (5.5, 42.8, 7.8, 43.8),
            "cote d'azur", "riviera", "nice", "monaco", "cannes", "st tropez", "antibes"),
    _region("Corsica & Sardinia", "mediterranean", (8.0, 38.8, 10.0, 43.0),
            "corsica", "sardinia", "costa smeralda", "bonifacio", "maddalena"),
    _region("Amalfi Coast & Southern Italy", "mediterranean", (13.5, 40.0, 16.0, 41.2),
            "amalfi", "amalfi coast", "capri", "naples", "ischia", "procida"),
    _region("Aeolian Islands", "mediterranean", (14.2, 38.3, 15.3, 38.9),
            "aeolian", "lipari", "stromboli", "vulcano", "salina"),
    _region("Sicily", "mediterranean", (12.3, 36.6, 15.7, 38.3),
            "sicilia", "palermo", "syracuse", "egadi islands"),
    _region("Malta & Gozo", "mediterranean", (14.0, 35.7, 14.6, 36.1),
            "malta", "gozo", "comino", "valletta"),
    _region("Greek Islands", "mediterranean", (19.0, 34.5, 30.0, 41.0),
            "greece", "aegean", "cyclades", "dodecanese", "sporades", "saronic gulf"),
    _region("Ionian Islands", "mediterranean", (19.5, 37.5, 21.0, 39.8),
            "ionian", "corfu", "lefkas", "zakynthos", "cephalonia", "ithaca", "paxos"),
    _region("Croatia / Dalmatia", "mediterranean", (13.0, 42.0, 19.0, 45.0),
            "croatia", "dalmatia", "split", "dubrovnik", "hvar", "korcula", "kornati"),
    _region("Montenegro", "mediterranean", (18.4, 41.8, 19.4, 42.6),
            "bay of kotor", "kotor", "tivat", "budva"),
    _region("Turkish Riviera", "mediterranean", (26.5, 36.0, 32.0, 38.0),
            "turkey", "turkish coast", "bodrum", "marmaris", "fethiye", "gocek", "kas"),
    # Atlantic
    _region("Canary Islands", "atlantic", (-18.5, 27.0, -13.0, 29.5),
            "canaries", "tenerife", "gran canaria", "lanzarote", "fuerteventura", "la gomera", "las palmas"),
    _region("Madeira", "atlantic", (-17.5, 32.3, -16.2, 33.2),
            "funchal", "porto santo"),
    _region("Azores", "atlantic", (-31.5, 36.5, -25.0, 40.0),
            "horta", "faial", "sao miguel", "ponta delgada"),
    _region("Cape Verde", "atlantic", (-25.5, 14.5, -22.5, 17.5),
            "cabo verde", "mindelo", "sao vicente"),
    _region("Portugal coast", "atlantic", (-11.0, 36.9, -6.0, 42.2),
            "portugal", "lisbon", "cascais", "algarve", "lagos"),
    _region("Bay of Biscay", "atlantic", (-10.0, 43.0, -1.0, 48.0),
            "biscay", "bilbao", "santander", "la rochelle"),
    _region("Brittany", "atlantic", (-5.5, 46.8, -1.5, 48.9),
            "bretagne", "brest", "lorient", "la trinite"),
    _region("New England", "atlantic", (-71.0, 41.0, -66.0, 45.0),
            "maine", "cape cod", "nantucket", "martha's vineyard", "newport ri", "boston"),
    _region("Chesapeake Bay", "atlantic", (-76.8, 36.8, -75.8, 39.8),
            "chesapeake", "annapolis", "baltimore", "norfolk"),
    _region("Florida Keys", "atlantic", (-83.0, 24.0, -80.0, 25.5),
            "key west", "key largo", "dry tortugas", "islamorada"),
    _region("Bermuda", "atlantic", (-65.0, 32.1, -64.5, 32.5),
            "st george's bermuda", "hamilton bermuda"),
    # Caribbean
    _region("Caribbean", "caribbean", (-80.5, 9.0, -59.0, 23.0),
            "carib", "west indies", "caribbean sea"),
    _region("Eastern Caribbean", "caribbean", (-65.0, 10.0, -59.0, 19.0),
            "east caribbean", "lesser antilles"),
    _region("Leeward Islands", "caribbean", (-63.5, 15.0, -59.0, 19.0),
            "antigua", "barbuda", "st kitts", "nevis", "guadeloupe", "montserrat"),
    _region("Windward Islands", "caribbean", (-62.0, 12.0, -59.0, 15.5),
            "martinique", "st lucia", "st vincent", "grenadines", "grenada", "bequia", "barbados"),
    _region("BVI/USVI", "caribbean", (-65.0, 17.5, -64.0, 18.8),
            "british virgin islands", "bvi", "us virgin islands", "usvi", "virgin islands", "tortola"),
    _region("St Barths & St Martin", "caribbean", (-63.2, 17.8, -62.8, 18.2),
            "st barths", "st barts", "st martin", "st maarten", "anguilla"),
    _region("ABC Islands", "caribbean", (-70.5, 10.0, -63.0, 13.0),
            "aruba", "bonaire", "curacao", "dutch caribbean"),
    _region("Bahamas", "caribbean", (-79.5, 21.0, -72.5, 27.5),
            "the bahamas", "nassau", "exumas", "abacos", "eleuthera"),
    _region("Belize", "caribbean", (-89.0, 15.8, -87.0, 18.5),
            "ambergris caye", "placencia", "belize barrier reef"),
    _region("San Blas Islands", "caribbean", (-79.5, 8.5, -77.0, 10.0),
            "san blas", "guna yala", "kuna yala"),
    _region("Panama Caribbean Coast", "caribbean", (-80.5, 9.0, -77.0, 10.5),
            "portobelo", "shelter bay", "colon", "panama canal"),
    # Northern Europe
    _region("British Isles", "northern_europe", (-11.0, 49.5, 2.0, 61.0),
            "uk", "united kingdom", "great britain", "england", "ireland"),
    _region("The Solent", "northern_europe", (-1.8, 50.5, -0.9, 50.9),
            "solent", "isle of wight", "cowes", "southampton", "lymington"),
    _region("Scotland West Coast", "northern_europe", (-7.8, 55.3, -4.8, 58.7),
            "scotland", "hebrides", "oban", "skye", "mull", "firth of clyde"),
    _region("Scandinavia & Finland", "northern_europe", (4.0, 55.0, 31.5, 71.5),
            "scandinavia", "nordic", "norway", "sweden", "finland", "fjords", "lofoten",
            "stockholm archipelago", "aland islands"),
    _region("Denmark", "northern_europe", (8.0, 54.5, 15.2, 57.8),
            "danish coast", "copenhagen", "funen", "aarhus"),
    _region("Baltic Sea", "northern_europe", (9.5, 53.5, 30.5, 66.0),
            "baltic", "gulf of finland", "estonia", "tallinn"),
    # Pacific
    _region("San Juan Islands & Salish Sea", "pacific", (-123.5, 47.8, -122.5, 49.0),
            "san juan islands", "puget sound", "salish sea", "friday harbor", "anacortes"),
    _region("British Columbia Coast", "pacific", (-134.0, 48.0, -123.0, 55.0),
            "inside passage", "bc coast", "vancouver island", "desolation sound", "haida gwaii"),
    _region("Galapagos Islands", "pacific", (-92.0, -1.5, -89.0, 1.5),
            "galapagos", "galápagos"),
    _region("French Polynesia", "pacific", (-154.0, -28.0, -134.0, -7.0),
            "tahiti", "bora bora", "moorea", "marquesas", "tuamotus", "society islands"),
    _region("Fiji", "pacific", (176.8, -19.3, 180.0, -16.0),
            "viti levu", "vanua levu", "yasawa", "mamanuca"),
    _region("Tonga", "pacific", (-176.3, -22.4, -173.6, -15.5),
            "vavau", "vava'u", "nukualofa", "ha'apai"),
    _region("New Zealand", "pacific", (166.0, -47.5, 179.0, -34.0),
            "nz", "bay of islands", "hauraki gulf", "auckland", "marlborough sounds"),
    _region("Whitsundays", "pacific", (148.3, -20.8, 149.2, -19.9),
            "whitsunday islands", "airlie beach", "great barrier reef", "hamilton island"),
    # Indian Ocean
    _region("Seychelles", "indian_ocean", (55.0, -5.0, 56.5, -3.5),
            "mahe", "praslin", "la digue"),
    _region("Maldives", "indian_ocean", (72.5, -0.8, 73.8, 7.2),
            "male atoll", "maldive islands"),
    _region("Thailand Andaman Coast", "indian_ocean", (97.5, 6.5, 99.5, 9.5),
            "phuket", "phang nga", "krabi", "koh lanta", "andaman sea"),
)

_WORD_CHAR = re.compile(r"[a-z0-9À-ɏ]")


def normalize(text: str) -> str:
    text = text.lower().strip().replace("’", "'").replace("‘", "'")
    return re.sub(r"\s+", " ", text)


def contains_phrase(text: str, phrase: str) -> bool:
    """True when `phrase` occurs in `text` with no letter or digit on either side."""
    if not phrase:
        return False

    start = 0
    while True:
        index = text.find(phrase, start)
        if index == -1:
            return False

        before = text[index - 1] if index > 0 else " "
        end = index + len(phrase)
        after = text[end] if end < len(text) else " "

        if not _WORD_CHAR.match(before) and not _WORD_CHAR.match(after):
            return True
        start = index + 1


def search_location(text: str) -> list[LocationMatch]:
    """
    Find every region named in `text`.

    At most one match per region; longer matched terms come first so
    "Greek Islands" beats "Greece".
    """
    normalized = normalize(text)
    matches: list[LocationMatch] = []

    for region in REGIONS:
        if contains_phrase(normalized, normalize(region.name)):
            matches.append(LocationMatch(region=region, matched_on="name", matched_term=region.name))
            continue

        for alias in region.aliases:
            if contains_phrase(normalized, normalize(alias)):
                matches.append(LocationMatch(region=region, matched_on="alias", matched_term=alias))
                break

    matches.sort(key=lambda m: len(m.matched_term), reverse=True)
    return matches


def get_location_bbox(query: str) -> Optional[Region]:
    """Best single match for a query, or None."""
    matches = search_location(query)
    return matches[0].region if matches else None


def list_regions(category: Optional[str] = None) -> list[Region]:
    if category is None:
        return list(REGIONS)
    return [region for region in REGIONS if region.category == category]


def get_categories() -> list[str]:
    seen: dict[str, None] = {}
    for region in REGIONS:
        seen.setdefault(region.category, None)
    return list(seen)


def find_mentioned_regions(text: str) -> list[Region]:
    """Regions named in a user message, most specific first, without duplicates."""
    regions: list[Region] = []
    for match in search_location(text):
        if match.region not in regions:
            regions.append(match.region)
    return regions
