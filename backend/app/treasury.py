"""Treasury maturity terms and the FRED series that back them."""

# Ordered shortest to longest maturity.
TREASURY_SERIES: dict[str, str] = {
    "1M": "DGS1MO",
    "3M": "DGS3MO",
    "6M": "DGS6MO",
    "1Y": "DGS1",
    "2Y": "DGS2",
    "3Y": "DGS3",
    "5Y": "DGS5",
    "7Y": "DGS7",
    "10Y": "DGS10",
    "20Y": "DGS20",
    "30Y": "DGS30",
}

VALID_TERMS: list[str] = list(TREASURY_SERIES)


def expected_series_id(term: str) -> str | None:
    """Return the FRED series id for a term, or None for an unknown term."""
    return TREASURY_SERIES.get(term)
