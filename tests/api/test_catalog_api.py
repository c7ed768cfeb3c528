"""Tests for the outcome catalog endpoints."""

from __future__ import annotations

from httpx import AsyncClient


async def test_list_catalog(client: AsyncClient) -> None:
    """GET /api/catalog returns all four tiers in difficulty order."""
    resp = await client.get("/api/catalog")
    assert resp.status_code == 200
    data = resp.json()
    assert [entry["tier"] for entry in data] == ["Easy", "Medium", "Hard", "Hardcore"]
    assert [len(entry["outcomes"]) for entry in data] == [11, 7, 6, 4]


async def test_get_tier(client: AsyncClient) -> None:
    resp = await client.get("/api/catalog/Hardcore")
    assert resp.status_code == 200
    outcomes = resp.json()["outcomes"]
    assert [o["label"] for o in outcomes] == ["1.63x", "2.80x", "4.95x", "9.08x"]
    assert [o["steps"] for o in outcomes] == [1, 2, 3, 4]
    assert all(o["tier"] == "Hardcore" for o in outcomes)


async def test_get_tier_case_insensitive(client: AsyncClient) -> None:
    resp = await client.get("/api/catalog/medium")
    assert resp.status_code == 200
    assert resp.json()["tier"] == "Medium"


async def test_unknown_tier(client: AsyncClient) -> None:
    resp = await client.get("/api/catalog/Nightmare")
    assert resp.status_code == 422
    assert resp.json()["error"] == "UnknownTierError"
