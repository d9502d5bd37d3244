"""
Sample shipping fees

Fees are flat per continent, in USD cents. Countries not in the map use the
default rate.
"""

SUPPORTED_CURRENCY = "usd"

SHIPPING_COSTS_USD_CENTS = {
    "North America": 2000,
    "Europe": 2500,
    "Asia": 3000,
    "South America": 3500,
    "Africa": 4000,
    "Oceania": 3000,
    "default": 2800,
}

COUNTRY_TO_CONTINENT = {
    "United States": "North America",
    "Canada": "North America",
    "Mexico": "North America",
    "United Kingdom": "Europe",
    "Germany": "Europe",
    "France": "Europe",
    "Italy": "Europe",
    "Spain": "Europe",
    "Australia": "Oceania",
    "Japan": "Asia",
    "China": "Asia",
    "India": "Asia",
    "South Korea": "Asia",
    "Brazil": "South America",
    "Argentina": "South America",
    "South Africa": "Africa",
    "Nigeria": "Africa",
    "Egypt": "Africa",
    "Other": "default",
}

COUNTRIES = sorted(COUNTRY_TO_CONTINENT)


def shipping_fee_cents(country: str) -> int:
    continent = COUNTRY_TO_CONTINENT.get(country, "default")
    return SHIPPING_COSTS_USD_CENTS.get(continent, SHIPPING_COSTS_USD_CENTS["default"])


def shipping_fee_dollars(country: str) -> float:
    return shipping_fee_cents(country) / 100
