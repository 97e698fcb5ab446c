import math

import pytest
from PIL import Image

from imaging import make_jpeg
from media.exif import extract_raw_metadata
from media.sanitizer import finite_number, parse_date_taken, sanitize, sanitize_text


def test_script_tags_are_removed_with_their_content():
    assert sanitize_text("<script>alert(1)</script>Canon") == "Canon"


def test_markup_is_stripped_to_text():
    assert sanitize_text('<b onclick="x()">EOS</b> R5') == "EOS R5"


def test_stray_angle_brackets_are_escaped():
    assert sanitize_text("a < b") == "a &lt; b"


@pytest.mark.parametrize("value", [None, 42, "", "   ", "<script>only</script>"])
def test_blank_or_non_string_text_is_dropped(value):
    assert sanitize_text(value) is None


@pytest.mark.parametrize("value", ["45.0", True, math.nan, math.inf, None, [1]])
def test_non_numbers_are_rejected(value):
    assert finite_number(value) is None


def test_number_range():
    assert finite_number(90, -90, 90) == 90.0
    assert finite_number(90.0001, -90, 90) is None
    assert finite_number(-180, -180, 180) == -180.0


def test_date_formats():
    assert parse_date_taken("2023:05:01 10:00:00") == "2023-05-01T10:00:00+00:00"
    assert parse_date_taken("2023-05-01T10:00:00Z") == "2023-05-01T10:00:00+00:00"
    assert parse_date_taken("yesterday") is None
    assert parse_date_taken(20230501) is None


def test_gps_requires_both_valid_coordinates():
    meta = sanitize({"lat": 45.5, "lng": "-122.6", "hasGPS": True})

    assert meta.gps_latitude == 45.5
    assert meta.gps_longitude is None
    assert meta.has_gps is False


def test_out_of_range_latitude_is_dropped():
    meta = sanitize({"lat": 91, "lng": 10})

    assert meta.gps_latitude is None
    assert meta.has_gps is False


def test_full_record():
    meta = sanitize(
        {
            "lat": 45.5,
            "lng": -122.6,
            "altitude": 12.5,
            "dateTaken": "2023:05:01 10:00:00",
            "camera": {"make": "<i>Canon</i>", "model": "EOS R5"},
            "lens": {"make": None, "model": "RF 24-70"},
            "iso": 400,
            "orientation": 1,
            "focalLength": "50 mm",
            "flash": "<img src=x onerror=alert(1)>Fired",
        }
    )

    assert meta.has_gps is True
    assert meta.camera_make == "Canon"
    assert meta.lens_make is None
    assert meta.lens_model == "RF 24-70"
    assert meta.iso == 400.0
    assert meta.flash == "Fired"

    body = meta.model_dump(by_alias=True)
    assert body["hasGPS"] is True
    assert body["gpsLatitude"] == 45.5
    assert body["dateTaken"] == "2023-05-01T10:00:00+00:00"
    assert body["cameraMake"] == "Canon"


@pytest.mark.parametrize("raw", [None, [], "lat=1", {"camera": "Canon"}])
def test_garbage_input_gives_empty_record(raw):
    meta = sanitize(raw)
    assert meta.has_gps is False
    assert meta.camera_make is None


def test_extracts_exif_from_uploaded_bytes():
    exif = Image.Exif()
    exif[0x010F] = "Canon"
    exif[0x0110] = "EOS R5"
    exif[0x8825] = {
        1: "N",
        2: (40.0, 26.0, 46.0),
        3: "W",
        4: (79.0, 58.0, 56.0),
    }
    data = make_jpeg(exif=exif)

    raw = extract_raw_metadata(data)
    meta = sanitize(raw)

    assert raw["camera"]["make"] == "Canon"
    assert meta.has_gps is True
    assert meta.gps_latitude == pytest.approx(40.4461, abs=1e-3)
    assert meta.gps_longitude == pytest.approx(-79.9822, abs=1e-3)


def test_no_exif_gives_empty_raw_record():
    assert extract_raw_metadata(make_jpeg()) == {}
