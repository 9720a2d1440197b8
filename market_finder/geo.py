import math

from market_finder.postal import PREFIX_LENGTH, PostalDirectory, load_postal_directory, normalize_postal_code
from market_finder.text import normalize_key


EARTH_RADIUS_KM = 6371.0

LatLon = tuple[float, float]

CITY_CENTROIDS: dict[str, LatLon] = {
    "praha": (50.087451, 14.420671),
    "brno": (49.195061, 16.606836),
    "ostrava": (49.820922, 18.262524),
    "plzen": (49.738431, 13.373629),
    "hradec kralove": (50.209285, 15.832974),
    "olomouc": (49.593778, 17.250112),
    "liberec": (50.767143, 15.05619),
    "zlin": (49.226441, 17.670684),
    "ceske budejovice": (48.974622, 14.47498),
    "pardubice": (50.034309, 15.781199),
    "usti nad labem": (50.661216, 14.053246),
    "kladno": (50.147734, 14.102853),
    "melnik": (50.350487, 14.474142),
    "neratovice": (50.259277, 14.517599),
    "kralupy nad vltavou": (50.241092, 14.311486),
    "mlada boleslav": (50.411349, 14.903177),
    "jihlava": (49.396037, 15.591207),
    "karlovy vary": (50.231852, 12.871962),
}


def haversine(a: LatLon, b: LatLon) -> float:
    """Great-circle distance in kilometres."""
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def city_to_coords(city: str | None) -> LatLon | None:
    key = normalize_key(city)
    if not key:
        return None
    if key in CITY_CENTROIDS:
        return CITY_CENTROIDS[key]
    first_word = key.split(" ", 1)[0]
    return CITY_CENTROIDS.get(first_word)


def postal_to_coords(postal: str | None, directory: PostalDirectory | None = None) -> LatLon | None:
    code = normalize_postal_code(postal)[:5]
    if not code:
        return None
    directory = directory or load_postal_directory()

    exact = [entry for entry in directory.entries if entry.code == code]
    same_prefix = [entry for entry in directory.entries if entry.code[:PREFIX_LENGTH] == code[:PREFIX_LENGTH]]
    for entry in exact + same_prefix:
        coords = city_to_coords(entry.city)
        if coords is not None:
            return coords
    return None
