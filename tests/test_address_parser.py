import pytest

from utils.address_parser import ParsedAddress, parse_address


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("George Miller <george@alphabak.com>", ParsedAddress("George Miller", "george@alphabak.com")),
        ('"Miller, George" <George@Alphabak.com>', ParsedAddress("Miller, George", "george@alphabak.com")),
        ("<jane@acme.com>", ParsedAddress(None, "jane@acme.com")),
        ("  jane@acme.com  ", ParsedAddress(None, "jane@acme.com")),
        ("Jane Doe", ParsedAddress("Jane Doe", None)),
        ("Jane <not-an-address>", ParsedAddress("Jane <not-an-address>", None)),
        ("", ParsedAddress(None, None)),
        (None, ParsedAddress(None, None)),
    ],
)
def test_parse_address(raw, expected):
    assert parse_address(raw) == expected
