"""Shared fixtures: the auth example schema used across the test-suite."""

import asyncio
from datetime import datetime

import pytest

from storage_orm import FieldTypeRegistry, MemoryStorageBackend, RandomKeyField, StorageManager, UrlField

AUTH_VERSION = datetime(2018, 7, 31)


class FakeRandomKeyField(RandomKeyField):
    def __init__(self):
        self.counter = 1

    async def generate_code(self):
        code = f"no-so-random-key-{self.counter}"
        self.counter += 1
        return code


def auth_collections():
    return {
        'user': {
            'version': AUTH_VERSION,
            'fields': {
                'identifier': {'type': 'string'},
                'passwordHash': {'type': 'string', 'optional': True},
                'isActive': {'type': 'boolean'},
            },
            'indices': [
                {'field': 'identifier'},
            ],
        },
        'userEmail': {
            'version': AUTH_VERSION,
            'fields': {
                'email': {'type': 'string'},
                'isVerified': {'type': 'boolean'},
                'isPrimary': {'type': 'boolean'},
            },
            'relationships': [
                {'child_of': 'user', 'reverse_alias': 'emails'},
            ],
            'indices': [
                {'field': [{'relationship': 'user'}, 'email'], 'unique': True},
            ],
        },
        'userEmailVerificationCode': {
            'version': AUTH_VERSION,
            'fields': {
                'code': {'type': 'random-key'},
                'expiry': {'type': 'datetime', 'optional': True},
            },
            'relationships': [
                {'single_child_of': 'userEmail', 'reverse_alias': 'verificationCode'},
            ],
            'indices': [
                {'field': 'code', 'unique': True},
            ],
        },
        'newsletter': {
            'version': AUTH_VERSION,
            'fields': {
                'name': {'type': 'string'},
            },
        },
        'newsletterSubscription': {
            'version': AUTH_VERSION,
            'fields': {},
            'relationships': [
                {'connects': ['user', 'newsletter']},
            ],
        },
    }


def generate_test_object(email='blub@bla.com', password_hash='hashed!', expires=10):
    return {
        'identifier': f"email:{email}",
        'passwordHash': password_hash,
        'isActive': False,
        'emails': [
            {
                'email': email,
                'isVerified': False,
                'isPrimary': True,
                'verificationCode': {
                    'expires': expires,
                },
            },
        ],
    }


def fake_field_types():
    return FieldTypeRegistry().register_types({
        'random-key': FakeRandomKeyField,
        'url': UrlField,
    })


@pytest.fixture
def make_manager():
    """Build an initialized StorageManager over the given backend and collections."""

    def factory(backend=None, collections=None, middleware=None):
        manager = StorageManager(
            backend=backend if backend is not None else MemoryStorageBackend(),
            middleware=middleware,
            field_types=fake_field_types(),
        )
        manager.registry.register_collections(collections if collections is not None else auth_collections())
        asyncio.run(manager.finish_initialization())
        asyncio.run(manager.backend.migrate())
        return manager

    return factory


@pytest.fixture
def auth_manager(make_manager):
    return make_manager()


@pytest.fixture
def test_object():
    return generate_test_object()


@pytest.fixture
def collection_id_generator():
    """Ids like 'user-1', counted per collection."""
    counters = {}

    def generate(collection, obj):
        counters[collection] = counters.get(collection, 0) + 1
        return f"{collection}-{counters[collection]}"

    return generate
