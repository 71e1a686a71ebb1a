"""Shared fixtures: mocked DynamoDB tables, a controllable clock and event factories."""
from datetime import datetime, timedelta, timezone

import boto3
import pytest
from moto import mock_aws

from processor.models import NormalizedEvent, RawEvent, Venue
from storage.dynamodb_catalog import DynamoDBCatalog

CATALOG_TABLE = 'test-event-catalog'
LOCK_TABLE = 'test-event-locks'
REGION = 'us-east-1'


class FakeClock:
    """Clock returning a fixed UTC time until advanced."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', REGION)


def create_catalog_table(dynamodb, table_name: str = CATALOG_TABLE):
    return dynamodb.create_table(
        TableName=table_name,
        KeySchema=[
            {'AttributeName': 'source_event_url', 'KeyType': 'HASH'}
        ],
        AttributeDefinitions=[
            {'AttributeName': 'source_event_url', 'AttributeType': 'S'},
            {'AttributeName': 'source_name', 'AttributeType': 'S'}
        ],
        GlobalSecondaryIndexes=[
            {
                'IndexName': 'source-index',
                'KeySchema': [
                    {'AttributeName': 'source_name', 'KeyType': 'HASH'}
                ],
                'Projection': {'ProjectionType': 'ALL'}
            }
        ],
        BillingMode='PAY_PER_REQUEST'
    )


def create_lock_table(dynamodb, table_name: str = LOCK_TABLE):
    return dynamodb.create_table(
        TableName=table_name,
        KeySchema=[
            {'AttributeName': 'lock_name', 'KeyType': 'HASH'}
        ],
        AttributeDefinitions=[
            {'AttributeName': 'lock_name', 'AttributeType': 'S'}
        ],
        BillingMode='PAY_PER_REQUEST'
    )


@pytest.fixture
def aws():
    """Active moto mock with the catalog and lock tables created."""
    with mock_aws():
        dynamodb = boto3.resource('dynamodb', region_name=REGION)
        create_catalog_table(dynamodb)
        create_lock_table(dynamodb)
        yield dynamodb


@pytest.fixture
def catalog(aws):
    """DynamoDBCatalog bound to the mocked catalog table."""
    return DynamoDBCatalog(CATALOG_TABLE, region_name=REGION)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def make_event():
    """Factory for NormalizedEvent with sensible defaults."""
    def _make(url='https://tickets.example.com/event/1', source='Ticketmaster', **overrides):
        fields = {
            'title': 'Concert',
            'description': 'An evening of live music',
            'short_summary': 'An evening of live music',
            'start': datetime(2025, 4, 12, 19, 30, tzinfo=timezone.utc),
            'end': None,
            'venue': Venue(name='Opera House', address='Bennelong Point', city='Sydney'),
            'category': frozenset({'Music'}),
            'image_url': 'https://img.example.com/1.jpg',
            'source_name': source,
            'source_event_url': url,
        }
        fields.update(overrides)
        return NormalizedEvent(**fields)
    return _make


@pytest.fixture
def make_raw_event():
    """Factory for RawEvent with sensible defaults."""
    def _make(**overrides):
        fields = {
            'title': 'Concert',
            'description': 'An evening of live music',
            'short_summary': '',
            'start_date': datetime(2025, 4, 12, 19, 30, tzinfo=timezone.utc),
            'end_date': None,
            'venue_name': 'Opera House',
            'venue_address': 'Bennelong Point',
            'category': ['Music'],
            'image_url': None,
            'event_url': 'https://tickets.example.com/event/1',
            'source_name': 'Ticketmaster',
        }
        fields.update(overrides)
        return RawEvent(**fields)
    return _make
