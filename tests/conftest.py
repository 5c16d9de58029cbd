"""Shared fixtures: canned PSI payloads."""

import pytest


def make_psi_payload(
    url: str = "https://example.com/",
    score: float = 0.875,
    fcp: float = 1234.5,
    lcp: float = 2500.2,
    tbt: float = 150,
    cls: float = 0.01234,
) -> dict:
    """A trimmed-down runPagespeed response with the fields we read."""
    return {
        "id": url,
        "lighthouseResult": {
            "requestedUrl": url,
            "finalUrl": url,
            "lighthouseVersion": "12.0.0",
            "fetchTime": "2026-10-17T09:05:00.000Z",
            "categories": {"performance": {"score": score}},
            "audits": {
                "first-contentful-paint": {"numericValue": fcp},
                "largest-contentful-paint": {"numericValue": lcp},
                "speed-index": {"numericValue": 1800},
                "interactive": {"numericValue": 3100},
                "total-blocking-time": {"numericValue": tbt},
                "cumulative-layout-shift": {"numericValue": cls},
            },
        },
    }


@pytest.fixture
def psi_payload():
    return make_psi_payload()
