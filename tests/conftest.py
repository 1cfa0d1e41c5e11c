"""
Test configuration and fixtures for wikicrawl tests
"""

import os

# Set ENVIRONMENT before importing any modules that read settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("WIKI_RETRY_COOLDOWN_SEC", "0")
os.environ.setdefault("CRAWL_IDLE_SLEEP_SEC", "0.01")
os.environ.setdefault("STORE_RETRY_MAX_WAIT", "0.1")
os.environ.pop("DATABASE_URL", None)

import pytest


@pytest.fixture
def temp_db_path(tmp_path):
    """Create a temporary database path for testing"""
    return str(tmp_path / "test_wikicrawl.db")


@pytest.fixture
def store(temp_db_path):
    """Crawl store keeping one edge per anchor text"""
    from wikicrawl.db import open_store

    return open_store(temp_db_path, edge_identity="pair_plus_display")


@pytest.fixture
def pair_only_store(temp_db_path):
    """Crawl store keeping one edge per (linker, linked)"""
    from wikicrawl.db import open_store

    return open_store(temp_db_path, edge_identity="pair_only")


@pytest.fixture
def france(store):
    """Store seeded with France under its Wikipedia curid"""
    page_id, _ = store.seed("France", 1095)
    return page_id
