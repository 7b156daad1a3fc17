# test_events.py - client log levels and event subscriptions

import logging

import pytest

from app.client.client import StoreClient
from app.client.errors import UniqueConstraintError, ValidationError
from app.client.events import LogEvent, QueryEvent, parse_log_definitions
from app.db.session import Base


def _client(log):
    client = StoreClient(datasource_url="sqlite://", log=log)
    Base.metadata.create_all(bind=client.engine)
    return client


def test_parse_log_definitions():
    """Test 1: strings default to stdout, dicts may ask for events"""
    assert parse_log_definitions(["query", {"level": "error", "emit": "event"}]) == {
        "query": "stdout",
        "error": "event",
    }
    with pytest.raises(ValidationError):
        parse_log_definitions(["debug"])
    with pytest.raises(ValidationError):
        parse_log_definitions([{"level": "info", "emit": "file"}])


def test_query_events_reach_subscribers():
    """Test 2: every statement is reported with its timing"""
    client = _client([{"level": "query", "emit": "event"}])
    events = []
    client.on("query", events.append)

    client.products.count()

    assert events
    event = events[-1]
    assert isinstance(event, QueryEvent)
    assert "FROM" in event.query.upper()
    assert event.duration >= 0
    assert event.target == "database"
    client.disconnect()


def test_subscribing_requires_event_emit():
    """Test 3: levels that log to stdout or are disabled cannot be subscribed"""
    client = StoreClient(datasource_url="sqlite://", log=["query"])

    with pytest.raises(ValidationError):
        client.on("query", print)
    with pytest.raises(ValidationError):
        client.on("error", print)


def test_errors_are_reported_once():
    """Test 4: a failing write emits one error event, also inside a transaction"""
    client = _client([{"level": "error", "emit": "event"}])
    errors = []
    client.on("error", errors.append)
    product = {"product_name": "Tea", "product_description": "", "product_price": 1.0}
    client.products.create(data=product)

    with pytest.raises(UniqueConstraintError):
        client.products.create(data=product)
    assert len(errors) == 1
    assert isinstance(errors[0], LogEvent)
    assert "P2002" in errors[0].message

    with pytest.raises(UniqueConstraintError):
        client.transaction(lambda tx: tx.products.create(data=product))
    assert len(errors) == 2
    client.disconnect()


def test_stdout_levels_use_the_database_logger(caplog):
    """Test 5: stdout output goes through the `database` logger"""
    client = StoreClient(datasource_url="sqlite://", log=["info", "query"])

    with caplog.at_level(logging.INFO, logger="database"):
        client.connect()
        client.query_raw("SELECT 1 AS one")

    messages = [record.getMessage() for record in caplog.records if record.name == "database"]
    assert any("Connected to sqlite://" in message for message in messages)
    assert any("SELECT 1 AS one" in message for message in messages)
    client.disconnect()


def test_disabled_levels_are_silent(caplog):
    """Test 6: nothing is logged for levels that were not configured"""
    client = StoreClient(datasource_url="sqlite://", log=["error"])

    with caplog.at_level(logging.DEBUG, logger="database"):
        client.connect()
        client.query_raw("SELECT 1 AS one")

    assert not any("SELECT 1" in record.getMessage() for record in caplog.records)
    client.disconnect()
