"""Static registries: supported countries, province names, datasets and land-use tags."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin


# ---------------------------------------------------------------------------
# Countries
# ---------------------------------------------------------------------------
ALLOWED_COUNTRIES = frozenset({"France", "Greece", "Hungary", "Italy"})

# Code or alternative name -> canonical country name. Keys are matched
# upper-cased first, then through the folded lookup built in normalize.py.
COUNTRY_NAME_MAPPING: Dict[str, str] = {
    "FR": "France",
    "FRA": "France",
    "IT": "Italy",
    "ITA": "Italy",
    "HU": "Hungary",
    "HUN": "Hungary",
    "EL": "Greece",  # Eurostat code
    "GR": "Greece",
    "GRC": "Greece",
    "France": "France",
    "Italy": "Italy",
    "Italia": "Italy",
    "Hungary": "Hungary",
    "Magyarország": "Hungary",
    "Greece": "Greece",
    "Hellas": "Greece",
    "Ελλάδα": "Greece",
    "Ελλάς": "Greece",
}


# ---------------------------------------------------------------------------
# Provinces (NUTS-2)
# ---------------------------------------------------------------------------
CANONICAL_PROVINCES: Dict[str, Tuple[str, ...]] = {
    "France": (
        "Île-de-France",
        "Centre-Val de Loire",
        "Bourgogne",
        "Franche-Comté",
        "Basse-Normandie",
        "Haute-Normandie",
        "Nord-Pas de Calais",
        "Picardie",
        "Alsace",
        "Champagne-Ardenne",
        "Lorraine",
        "Pays de la Loire",
        "Bretagne",
        "Aquitaine",
        "Limousin",
        "Poitou-Charentes",
        "Languedoc-Roussillon",
        "Midi-Pyrénées",
        "Auvergne",
        "Rhône-Alpes",
        "Provence-Alpes-Côte d'Azur",
        "Corse",
        "Guadeloupe",
        "Martinique",
        "Guyane",
        "La Réunion",
        "Mayotte",
    ),
    "Italy": (
        "Piemonte",
        "Valle d'Aosta/Vallée d'Aoste",
        "Liguria",
        "Lombardia",
        "Provincia Autonoma di Bolzano/Bozen",
        "Provincia Autonoma di Trento",
        "Veneto",
        "Friuli-Venezia Giulia",
        "Emilia-Romagna",
        "Toscana",
        "Umbria",
        "Marche",
        "Lazio",
        "Abruzzo",
        "Molise",
        "Campania",
        "Puglia",
        "Basilicata",
        "Calabria",
        "Sicilia",
        "Sardegna",
    ),
    "Hungary": (
        "Budapest",
        "Pest",
        "Közép-Dunántúl",
        "Nyugat-Dunántúl",
        "Dél-Dunántúl",
        "Észak-Magyarország",
        "Észak-Alföld",
        "Dél-Alföld",
    ),
    "Greece": (
        "Attica",
        "Eastern Macedonia and Thrace",
        "Central Macedonia",
        "Western Macedonia",
        "Thessaly",
        "Epirus",
        "Ionian Islands",
        "Western Greece",
        "Central Greece",
        "Peloponnese",
        "North Aegean",
        "South Aegean",
        "Crete",
    ),
}

# Alternative spellings (Greek script, Latin transliterations, English
# exonyms) -> canonical name. Keys are compared after folding.
PROVINCE_ALIASES: Dict[str, str] = {
    "Αττική": "Attica",
    "Attiki": "Attica",
    "Ανατολική Μακεδονία, Θράκη": "Eastern Macedonia and Thrace",
    "Ανατολική Μακεδονία και Θράκη": "Eastern Macedonia and Thrace",
    "Anatoliki Makedonia, Thraki": "Eastern Macedonia and Thrace",
    "Κεντρική Μακεδονία": "Central Macedonia",
    "Kentriki Makedonia": "Central Macedonia",
    "Δυτική Μακεδονία": "Western Macedonia",
    "Dytiki Makedonia": "Western Macedonia",
    "Θεσσαλία": "Thessaly",
    "Thessalia": "Thessaly",
    "Ήπειρος": "Epirus",
    "Ipeiros": "Epirus",
    "Ιόνια Νησιά": "Ionian Islands",
    "Ionia Nisia": "Ionian Islands",
    "Δυτική Ελλάδα": "Western Greece",
    "Dytiki Ellada": "Western Greece",
    "Στερεά Ελλάδα": "Central Greece",
    "Sterea Ellada": "Central Greece",
    "Πελοπόννησος": "Peloponnese",
    "Peloponnisos": "Peloponnese",
    "Βόρειο Αιγαίο": "North Aegean",
    "Voreio Aigaio": "North Aegean",
    "Νότιο Αιγαίο": "South Aegean",
    "Notio Aigaio": "South Aegean",
    "Κρήτη": "Crete",
    "Kriti": "Crete",
    "Centre": "Centre-Val de Loire",
    "Corsica": "Corse",
    "Réunion": "La Réunion",
    "Piedmont": "Piemonte",
    "Aosta Valley": "Valle d'Aosta/Vallée d'Aoste",
    "Valle d'Aosta": "Valle d'Aosta/Vallée d'Aoste",
    "Lombardy": "Lombardia",
    "Bolzano": "Provincia Autonoma di Bolzano/Bozen",
    "South Tyrol": "Provincia Autonoma di Bolzano/Bozen",
    "Trento": "Provincia Autonoma di Trento",
    "Tuscany": "Toscana",
    "Latium": "Lazio",
    "Apulia": "Puglia",
    "Sicily": "Sicilia",
    "Sardinia": "Sardegna",
    "Central Transdanubia": "Közép-Dunántúl",
    "Western Transdanubia": "Nyugat-Dunántúl",
    "Southern Transdanubia": "Dél-Dunántúl",
    "Northern Hungary": "Észak-Magyarország",
    "Northern Great Plain": "Észak-Alföld",
    "Southern Great Plain": "Dél-Alföld",
}


# ---------------------------------------------------------------------------
# Column aliases (normalized header names, tried in order)
# ---------------------------------------------------------------------------
FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "latitude": ("lat", "latitude", "__lat", "y"),
    "longitude": ("lon", "lng", "longitude", "__lon", "long", "x"),
    "location": ("location", "coordinates", "lat_lon", "latlon", "lat_lng"),
    "country": ("country", "country_name"),
    "country_code": ("country_code", "countrycode", "cntr_code", "iso2"),
    "province": ("province", "nuts2", "nuts2_name", "region"),
    "region_combined": ("province_country", "region_country", "nuts2_country"),
    "quantity": (
        "kg_n_per_year",
        "n_kg_per_year",
        "n_kgper_year",
        "production",
        "output",
    ),
    "name": (
        "name",
        "wwtp_name",
        "plant_name",
        "facility_name",
        "facility",
        "airport",
        "university",
    ),
    "capacity_pe": ("capacity_pe", "pe", "population_equivalent"),
}


# ---------------------------------------------------------------------------
# Datasets
# ---------------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class Dataset:
    """A delimited-text point dataset served over HTTP(S)."""

    key: str
    label: str
    path: str
    primary: bool = False

    def url(self, base_url: str) -> str:
        if self.path.startswith(("http://", "https://")):
            return self.path
        return urljoin(base_url if base_url.endswith("/") else f"{base_url}/", self.path)


PRIMARY_DATASET = Dataset(
    key="wtp",
    label="Wastewater treatment plants",
    path="wtp_all.csv",
    primary=True,
)

AUXILIARY_DATASETS: Tuple[Dataset, ...] = (
    Dataset(key="airports", label="Airports", path="Airports_NUTS2_supply.csv"),
    Dataset(key="prisons", label="Prisons", path="Prisons_NUTS2_supply.csv"),
    Dataset(key="stadiums", label="Stadiums", path="Stadiums_NUTS2_supply.csv"),
    Dataset(key="universities", label="Universities", path="Universities_NUTS2_supply.csv"),
    Dataset(key="chefExpress", label="CheffExpress", path="CheffExpress_NUTS2_supply.csv"),
)


def get_dataset(key: str) -> Optional[Dataset]:
    """Look up a dataset by key (case-insensitive)."""
    wanted = key.strip().lower()
    for dataset in (PRIMARY_DATASET, *AUXILIARY_DATASETS):
        if dataset.key.lower() == wanted:
            return dataset
    return None


def list_all_datasets() -> List[Dataset]:
    return [PRIMARY_DATASET, *AUXILIARY_DATASETS]


# ---------------------------------------------------------------------------
# Land use and geodata service
# ---------------------------------------------------------------------------
LANDUSE_TAGS: Tuple[str, ...] = (
    "farmland",
    "plantation",
    "orchard",
    "vineyard",
    "greenhouse_horticulture",
)

OVERPASS_ENDPOINTS: Tuple[str, ...] = (
    "https://overpass.kumi.systems/api/interpreter",
    "https://overpass-api.de/api/interpreter",
    "https://z.overpass-api.de/api/interpreter",
)
