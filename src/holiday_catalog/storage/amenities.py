"""Controlled amenity vocabulary seeded into every new database."""
from __future__ import annotations

from typing import NamedTuple


class AmenitySeed(NamedTuple):
    slug: str
    name: str
    icon: str
    category: str


AMENITIES: tuple[AmenitySeed, ...] = (
    AmenitySeed("wifi", "WiFi", "wifi", "internet"),
    AmenitySeed("smart-tv", "Smart TV", "tv", "entertainment"),
    AmenitySeed("streaming", "Streaming Services", "play-circle", "entertainment"),
    AmenitySeed("sky-tv", "Sky TV", "satellite", "entertainment"),
    AmenitySeed("games-room", "Games Room", "gamepad", "entertainment"),
    AmenitySeed("parking", "Parking", "car", "parking"),
    AmenitySeed("private-parking", "Private Parking", "car", "parking"),
    AmenitySeed("garage", "Garage", "warehouse", "parking"),
    AmenitySeed("ev-charging", "Electric Car Charging", "bolt", "parking"),
    AmenitySeed("garden", "Garden", "tree", "outdoor"),
    AmenitySeed("enclosed-garden", "Enclosed Garden", "fence", "outdoor"),
    AmenitySeed("patio", "Patio", "umbrella", "outdoor"),
    AmenitySeed("bbq", "BBQ", "grill", "outdoor"),
    AmenitySeed("outdoor-furniture", "Outdoor Furniture", "chair", "outdoor"),
    AmenitySeed("hot-tub", "Hot Tub", "water", "outdoor"),
    AmenitySeed("pool", "Swimming Pool", "swimming-pool", "outdoor"),
    AmenitySeed("pet-friendly", "Pet Friendly", "dog", "pets"),
    AmenitySeed("dog-welcome", "Dog Welcome", "dog", "pets"),
    AmenitySeed("high-chair", "High Chair", "baby", "family"),
    AmenitySeed("cot", "Cot", "bed", "family"),
    AmenitySeed("stair-gate", "Stair Gate", "shield", "family"),
    AmenitySeed("dishwasher", "Dishwasher", "dish", "kitchen"),
    AmenitySeed("washing-machine", "Washing Machine", "washer", "kitchen"),
    AmenitySeed("tumble-dryer", "Tumble Dryer", "dryer", "kitchen"),
    AmenitySeed("microwave", "Microwave", "microwave", "kitchen"),
    AmenitySeed("coffee-machine", "Coffee Machine", "coffee", "kitchen"),
    AmenitySeed("central-heating", "Central Heating", "fire", "heating"),
    AmenitySeed("log-burner", "Log Burner", "fire", "heating"),
    AmenitySeed("log-fire", "Log Fire", "fire", "heating"),
    AmenitySeed("open-fire", "Open Fire", "flame", "heating"),
    AmenitySeed("air-con", "Air Conditioning", "snowflake", "cooling"),
    AmenitySeed("sea-view", "Sea View", "water", "view"),
    AmenitySeed("beach-access", "Beach Access", "umbrella-beach", "location"),
    AmenitySeed("coastal", "Coastal Location", "water", "location"),
    AmenitySeed("rural", "Rural Location", "tree", "location"),
    AmenitySeed("village", "Village Location", "home", "location"),
    AmenitySeed("pub-nearby", "Pub Nearby", "beer", "location"),
    AmenitySeed("shop-nearby", "Shop Nearby", "shopping-cart", "location"),
    AmenitySeed("wheelchair-accessible", "Wheelchair Accessible", "wheelchair", "accessibility"),
    AmenitySeed("ground-floor", "Ground Floor", "building", "accessibility"),
    AmenitySeed("level-access", "Level Access", "accessible", "accessibility"),
)

AMENITY_SLUGS = frozenset(seed.slug for seed in AMENITIES)
