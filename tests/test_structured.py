"""
Tests for the JSON-LD structured extractor.
"""

import json

import pytest

from core.models import ExtractionMethod
from scraper.structured import (
    StructuredExtractor,
    extract_structured,
    find_listing_objects,
    parse_floor_size,
    parse_int,
    parse_price_value,
)


SOURCE_URL = "https://example.mt/listing/123"


def page(*blocks, raw: str = "") -> str:
    """Wrap JSON-LD blocks in a minimal HTML page."""
    scripts = "".join(
        f'<script type="application/ld+json">{json.dumps(block)}</script>'
        for block in blocks
    )
    return f"<html><head>{raw}{scripts}</head><body></body></html>"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def listing_schema():
    return {
        "@context": "https://schema.org",
        "@type": "RealEstateListing",
        "name": "3 Bedroom Apartment with Sea Views",
        "description": "Bright apartment close to the promenade.",
        "url": "https://example.mt/listing/123-sea-views",
        "offers": {"@type": "Offer", "price": "350000", "priceCurrency": "EUR"},
        "numberOfBedrooms": 3,
        "numberOfBathroomsTotal": "2",
        "floorSize": {"value": 120, "unitCode": "MTK"},
        "address": {
            "streetAddress": "Tower Road",
            "addressLocality": "Sliema",
            "addressCountry": "MT",
        },
        "geo": {"latitude": 35.9122, "longitude": "14.5040"},
        "image": [
            "https://example.mt/img/1.jpg",
            {"url": "https://example.mt/img/2.jpg"},
        ],
    }


# =============================================================================
# Extraction
# =============================================================================


class TestExtractStructured:
    """Tests for extract_structured."""

    def test_full_listing(self, listing_schema):
        result = extract_structured(page(listing_schema), SOURCE_URL)

        assert result is not None
        assert result.extraction_method == ExtractionMethod.STRUCTURED
        assert result.title == "3 Bedroom Apartment with Sea Views"
        assert result.price == 350000.0
        assert result.currency == "EUR"
        assert result.bedrooms == 3
        assert result.bathrooms == 2
        assert result.size_sqm == 120
        assert result.area == "Sliema"
        assert result.address == "Tower Road, Sliema, MT"
        assert result.latitude == pytest.approx(35.9122)
        assert result.longitude == pytest.approx(14.504)
        assert result.images == [
            "https://example.mt/img/1.jpg",
            "https://example.mt/img/2.jpg",
        ]
        assert result.canonical_url == "https://example.mt/listing/123-sea-views"

    def test_canonical_url_defaults_to_source(self, listing_schema):
        del listing_schema["url"]

        result = extract_structured(page(listing_schema), SOURCE_URL)

        assert result.canonical_url == SOURCE_URL

    def test_graph_container(self, listing_schema):
        listing_schema["@type"] = "Apartment"
        graph = {
            "@context": "https://schema.org",
            "@graph": [
                {"@type": "WebPage", "name": "Listing page"},
                listing_schema,
            ],
        }

        result = extract_structured(page(graph), SOURCE_URL)

        assert result is not None
        assert result.title == "3 Bedroom Apartment with Sea Views"

    def test_type_list(self, listing_schema):
        listing_schema["@type"] = ["Product", "Apartment"]

        result = extract_structured(page(listing_schema), SOURCE_URL)

        assert result is not None

    def test_invalid_json_block_is_skipped(self, listing_schema):
        broken = '<script type="application/ld+json">{"@type": "House", </script>'

        result = extract_structured(page(listing_schema, raw=broken), SOURCE_URL)

        assert result is not None
        assert result.price == 350000.0

    def test_non_listing_types_return_none(self):
        organisation = {"@type": "Organization", "name": "Example Estates"}

        assert extract_structured(page(organisation), SOURCE_URL) is None

    def test_no_json_ld_returns_none(self):
        assert extract_structured("<html><body>Nothing</body></html>", SOURCE_URL) is None

    def test_missing_name_uses_placeholder(self):
        result = extract_structured(page({"@type": "House", "price": 500000}), SOURCE_URL)

        assert result.title == "Untitled Listing"
        assert result.price == 500000.0

    def test_extractor_class_delegates(self, listing_schema):
        result = StructuredExtractor().extract(page(listing_schema), SOURCE_URL)

        assert result.bedrooms == 3


# =============================================================================
# Field Parsing
# =============================================================================


class TestFieldParsing:
    """Tests for defensive field parsing."""

    def test_price_from_symbol_string(self):
        result = extract_structured(
            page({"@type": "Residence", "name": "Flat", "price": "£1,200"}),
            SOURCE_URL,
        )

        assert result.price == 1200.0
        assert result.currency == "GBP"

    def test_price_from_nested_object(self):
        schema = {
            "@type": "House",
            "name": "Villa",
            "price": {"price": 1250000, "priceCurrency": "USD"},
        }

        result = extract_structured(page(schema), SOURCE_URL)

        assert result.price == 1250000.0
        assert result.currency == "USD"

    def test_offers_list(self):
        schema = {
            "@type": "Apartment",
            "name": "Flat",
            "offers": [{"price": 900, "priceCurrency": "EUR"}],
        }

        result = extract_structured(page(schema), SOURCE_URL)

        assert result.price == 900.0

    def test_bad_numbers_become_none(self):
        schema = {
            "@type": "Apartment",
            "name": "Flat",
            "numberOfBedrooms": "three",
            "numberOfBathroomsTotal": {"value": 2},
        }

        result = extract_structured(page(schema), SOURCE_URL)

        assert result.bedrooms is None
        assert result.bathrooms is None

    def test_rooms_fallback(self):
        schema = {"@type": "Apartment", "name": "Flat", "numberOfRooms": 4}

        result = extract_structured(page(schema), SOURCE_URL)

        assert result.bedrooms == 4

    def test_string_address_takes_second_part_as_locality(self):
        schema = {"@type": "House", "name": "House", "address": "12 Main Street, Mosta, Malta"}

        result = extract_structured(page(schema), SOURCE_URL)

        assert result.area == "Mosta"
        assert result.address == "12 Main Street, Mosta, Malta"

    def test_photo_objects(self):
        schema = {
            "@type": "House",
            "name": "House",
            "photo": [{"contentUrl": "https://example.mt/a.jpg"}, {"caption": "no url"}],
        }

        result = extract_structured(page(schema), SOURCE_URL)

        assert result.images == ["https://example.mt/a.jpg"]

    @pytest.mark.parametrize("value,expected", [
        (3, 3),
        (2.0, 2),
        ("4", 4),
        ("4 bedrooms", 4),
        ("four", None),
        (None, None),
        (True, None),
    ])
    def test_parse_int(self, value, expected):
        assert parse_int(value) == expected

    @pytest.mark.parametrize("value,expected", [
        (250000, 250000.0),
        ("EUR 1200", 1200.0),
        ("€1,200", 1200.0),
        (0, None),
        ("POA", None),
    ])
    def test_parse_price_value(self, value, expected):
        assert parse_price_value(value) == expected

    def test_floor_size_square_feet(self):
        assert parse_floor_size({"value": 1076, "unitCode": "FTK"}) == 100
        assert parse_floor_size({"value": "1076", "unitText": "sq ft"}) == 100

    def test_floor_size_metres(self):
        assert parse_floor_size({"value": 85.4, "unitCode": "MTK"}) == 85

    def test_find_listing_objects_nested_arrays(self):
        data = [[{"@type": "House"}], {"@type": "BreadcrumbList"}]

        assert find_listing_objects(data) == [{"@type": "House"}]
