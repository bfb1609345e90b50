"""
Country and city catalog used to encode location attributes.

Country ids are 1..5; city ids are ``country_id * 100 + n``.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class City:
    id: int
    name: str


@dataclass(frozen=True)
class Country:
    id: int
    name: str
    cities: Tuple[City, ...]


COUNTRIES: Tuple[Country, ...] = (
    Country(1, "United States", (
        City(101, "New York"),
        City(102, "Los Angeles"),
        City(103, "San Francisco"),
    )),
    Country(2, "Canada", (
        City(201, "Toronto"),
        City(202, "Vancouver"),
        City(203, "Montreal"),
    )),
    Country(3, "United Kingdom", (
        City(301, "London"),
        City(302, "Manchester"),
        City(303, "Edinburgh"),
    )),
    Country(4, "Germany", (
        City(401, "Berlin"),
        City(402, "Munich"),
        City(403, "Frankfurt"),
    )),
    Country(5, "Japan", (
        City(501, "Tokyo"),
        City(502, "Osaka"),
        City(503, "Kyoto"),
    )),
)

_COUNTRY_INDEX: Dict[int, Country] = {c.id: c for c in COUNTRIES}
_CITY_INDEX: Dict[int, Tuple[City, int]] = {
    city.id: (city, country.id) for country in COUNTRIES for city in country.cities
}


def get_country_options() -> List[Country]:
    return list(COUNTRIES)


def get_cities_for_country(country_id: int) -> List[City]:
    country = _COUNTRY_INDEX.get(country_id)
    return list(country.cities) if country else []


def get_country_name(country_id: int) -> Optional[str]:
    country = _COUNTRY_INDEX.get(country_id)
    return country.name if country else None


def get_city_name(city_id: int) -> Optional[str]:
    entry = _CITY_INDEX.get(city_id)
    return entry[0].name if entry else None


def get_country_for_city(city_id: int) -> Optional[int]:
    entry = _CITY_INDEX.get(city_id)
    return entry[1] if entry else None


def city_in_country(city_id: int, country_id: int) -> bool:
    """True if the catalog lists ``city_id`` under ``country_id``."""
    return get_country_for_city(city_id) == country_id
