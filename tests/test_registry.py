"""Tests for collection registration, versions and relationship resolution."""

import asyncio
import logging
from datetime import datetime

import pytest

from storage_orm import (
    ChildOf,
    CollectionField,
    Connects,
    FieldTypeError,
    FieldTypeRegistry,
    IndexDefinition,
    RegistryError,
    RelationshipError,
    RelationshipReference,
    SchemaError,
    SingleChildOf,
    StorageRegistry,
    UnknownCollectionError,
    UrlField,
)

V1 = datetime(2019, 2, 1)
V2 = datetime(2019, 2, 2)


def versioned_collections():
    return {
        'foo': [
            {'version': V1, 'fields': {'spam': {'type': 'string'}}},
            {'version': V2, 'fields': {'spam': {'type': 'string'}, 'eggs': {'type': 'string'}}},
        ],
        'bar': [
            {'version': V1, 'fields': {'one': {'type': 'string'}}},
            {'version': V2, 'fields': {'one': {'type': 'string'}, 'two': {'type': 'string'}}},
        ],
    }


def create_registry(collections, field_types=None):
    registry = StorageRegistry(field_types=field_types)
    registry.register_collections(collections)
    asyncio.run(registry.finish_initialization())
    return registry


class TestVersions:
    """Tests for versioned definitions and schema history."""

    def test_collections_by_version(self):
        registry = create_registry(versioned_collections())

        first = registry.get_collections_by_version(V1)
        assert set(first) == {'foo', 'bar'}
        assert first['foo'].version == V1
        assert first['foo'].fields == {
            'id': CollectionField(type='auto-pk', index=0),
            'spam': CollectionField(type='string'),
        }
        assert first['bar'].fields == {
            'id': CollectionField(type='auto-pk', index=0),
            'one': CollectionField(type='string'),
        }

        second = registry.get_collections_by_version(V2)
        assert set(second['foo'].fields) == {'id', 'spam', 'eggs'}
        assert set(second['bar'].fields) == {'id', 'one', 'two'}

    def test_unknown_version_is_empty(self):
        registry = create_registry(versioned_collections())
        assert registry.get_collections_by_version(datetime(2000, 1, 1)) == {}

    def test_schema_history(self):
        registry = create_registry(versioned_collections())

        history = registry.get_schema_history()

        assert [entry.version for entry in history] == [V1, V2]
        assert history[0].collections == registry.get_collections_by_version(V1)
        assert history[1].collections == registry.get_collections_by_version(V2)

    @pytest.mark.parametrize("reverse", [False, True])
    def test_latest_version_wins_regardless_of_order(self, reverse):
        defs = versioned_collections()['foo']
        if reverse:
            defs = list(reversed(defs))

        registry = create_registry({'foo': defs})

        assert registry.collections['foo'].version == V2
        assert set(registry.collections['foo'].fields) == {'id', 'spam', 'eggs'}

    def test_latest_version_wins_across_calls(self):
        registry = StorageRegistry()
        registry.register_collection('foo', versioned_collections()['foo'][1])
        registry.register_collection('foo', versioned_collections()['foo'][0])

        assert registry.collections['foo'].version == V2
        assert [entry.version for entry in registry.get_schema_history()] == [V1, V2]

    def test_same_version_twice_is_logged(self, caplog):
        registry = StorageRegistry()
        registry.register_collection('foo', {'version': V1, 'fields': {'a': {'type': 'string'}}})

        with caplog.at_level(logging.WARNING, logger='storage_orm.registry'):
            registry.register_collection('foo', {'version': V1, 'fields': {'b': {'type': 'string'}}})

        assert "registered twice" in caplog.text
        assert set(registry.collections['foo'].fields) == {'id', 'b'}

    def test_deprecated_maps_warn(self):
        registry = create_registry(versioned_collections())

        with pytest.warns(DeprecationWarning):
            assert set(registry.collection_version_map) == {V1, V2}
        with pytest.warns(DeprecationWarning):
            assert len(registry.collections_by_version[V1]) == 2


class TestPrimaryKeys:
    """Tests for primary key assignment."""

    def test_auto_pk_is_prepended(self):
        registry = create_registry({
            'foo': {
                'version': V1,
                'fields': {'name': {'type': 'string'}},
                'indices': [{'field': 'name'}],
            },
        })
        definition = registry.collections['foo']

        assert definition.pk_index == 'id'
        assert definition.indices[0] == IndexDefinition(field='id', pk=True, unique=True)
        assert definition.fields['id'].type == 'auto-pk'
        assert definition.fields['name'].index == 1

    def test_explicit_pk(self):
        registry = create_registry({
            'foo': {
                'version': V1,
                'fields': {'slug': {'type': 'string'}},
                'indices': [{'field': 'slug', 'pk': True}],
            },
        })
        definition = registry.collections['foo']

        assert definition.pk_index == 'slug'
        assert 'id' not in definition.fields
        assert definition.fields['slug'] == CollectionField(type='string', index=0)

    def test_explicit_pk_without_field_gets_auto_pk(self):
        registry = create_registry({
            'foo': {
                'version': V1,
                'fields': {},
                'indices': [{'field': 'key', 'pk': True}],
            },
        })
        assert registry.collections['foo'].fields['key'].type == 'auto-pk'

    def test_compound_pk(self):
        registry = create_registry({
            'membership': {
                'version': V1,
                'fields': {'group': {'type': 'string'}, 'member': {'type': 'string'}},
                'indices': [{'field': ['group', 'member'], 'pk': True}],
            },
        })
        definition = registry.collections['membership']

        assert definition.pk_index == ['group', 'member']
        assert definition.fields['group'].index == 0
        assert definition.fields['member'].index == 0

    def test_multiple_pks_are_rejected(self):
        registry = StorageRegistry()
        with pytest.raises(SchemaError, match="foo"):
            registry.register_collection('foo', {
                'version': V1,
                'fields': {'a': {'type': 'string'}, 'b': {'type': 'string'}},
                'indices': [{'field': 'a', 'pk': True}, {'field': 'b', 'pk': True}],
            })

    def test_relationship_pk_is_rejected(self):
        registry = StorageRegistry()
        with pytest.raises(SchemaError, match="user"):
            registry.register_collection('email', {
                'version': V1,
                'fields': {},
                'relationships': [{'child_of': 'user'}],
                'indices': [{'field': {'relationship': 'user'}, 'pk': True}],
            })


class TestRelationships:
    """Tests for relationship preprocessing and the reverse pass."""

    def test_child_of_defaults(self, auth_manager):
        registry = auth_manager.registry
        user_email = registry.collections['userEmail']
        relationship = user_email.relationships_by_alias['user']

        assert isinstance(relationship, ChildOf)
        assert relationship.source_collection == 'userEmail'
        assert relationship.target_collection == 'user'
        assert relationship.field_name == 'userRel'
        assert relationship.reverse_alias == 'emails'
        assert user_email.fields['userRel'].type == 'foreign-key'
        assert registry.collections['user'].reverse_relationships_by_alias['emails'] is relationship

    def test_default_reverse_alias_is_plural(self):
        registry = create_registry({
            'user': {'version': V1, 'fields': {}},
            'email': {'version': V1, 'fields': {}, 'relationships': [{'child_of': 'user'}]},
        })
        assert set(registry.collections['user'].reverse_relationships_by_alias) == {'emails'}

    def test_single_child_of_defaults(self, auth_manager):
        registry = auth_manager.registry
        relationship = registry.collections['userEmailVerificationCode'].relationships_by_alias['userEmail']

        assert isinstance(relationship, SingleChildOf)
        assert relationship.single
        assert relationship.field_name == 'userEmailRel'
        assert registry.collections['userEmail'].reverse_relationships_by_alias['verificationCode'] is relationship

    def test_single_child_of_default_reverse_alias_is_singular(self):
        registry = create_registry({
            'user': {'version': V1, 'fields': {}},
            'profile': {'version': V1, 'fields': {}, 'relationships': [{'single_child_of': 'user'}]},
        })
        assert set(registry.collections['user'].reverse_relationships_by_alias) == {'profile'}

    def test_custom_alias_and_field_name(self):
        registry = create_registry({
            'user': {'version': V1, 'fields': {}},
            'note': {
                'version': V1,
                'fields': {},
                'relationships': [ChildOf(target='user', alias='author', field_name='authorId')],
            },
        })
        note = registry.collections['note']

        assert set(note.relationships_by_alias) == {'author'}
        assert note.fields['authorId'].type == 'foreign-key'
        assert 'notes' in registry.collections['user'].reverse_relationships_by_alias

    def test_connects_defaults(self, auth_manager):
        registry = auth_manager.registry
        subscription = registry.collections['newsletterSubscription']
        relationship = subscription.relationships[0]

        assert isinstance(relationship, Connects)
        assert relationship.aliases == ('user', 'newsletter')
        assert relationship.field_names == ('userRel', 'newsletterRel')
        assert relationship.reverse_aliases == ('newsletters', 'users')
        assert subscription.fields['userRel'].type == 'foreign-key'
        assert subscription.fields['newsletterRel'].type == 'foreign-key'
        assert subscription.indices[-1] == IndexDefinition(field=['userRel', 'newsletterRel'])
        assert registry.collections['user'].reverse_relationships_by_alias['newsletters'] is relationship
        assert registry.collections['newsletter'].reverse_relationships_by_alias['users'] is relationship

    def test_relationship_index_reference_flags_field(self, auth_manager):
        user_email = auth_manager.registry.collections['userEmail']
        compound = user_email.indices[1]

        assert compound.field == [RelationshipReference('user'), 'email']
        # Последний индекс, в который входит поле, перезаписывает номер
        assert user_email.fields['userRel'].index == 2
        assert user_email.fields['email'].index == 1

    def test_input_relationship_is_not_mutated(self):
        relationship = ChildOf(target='user')
        create_registry({
            'user': {'version': V1, 'fields': {}},
            'email': {'version': V1, 'fields': {}, 'relationships': [relationship]},
        })
        assert relationship.alias is None
        assert relationship.field_name is None

    def test_reverse_edges_only_after_initialization(self):
        registry = StorageRegistry()
        registry.register_collections({
            'email': {'version': V1, 'fields': {}, 'relationships': [{'child_of': 'user'}]},
            'user': {'version': V1, 'fields': {}},
        })
        assert registry.collections['user'].reverse_relationships_by_alias == {}

        asyncio.run(registry.finish_initialization())
        assert set(registry.collections['user'].reverse_relationships_by_alias) == {'emails'}

    def test_unknown_relationship_target(self):
        registry = StorageRegistry()
        registry.register_collection('email', {
            'version': V1, 'fields': {}, 'relationships': [{'child_of': 'user'}],
        })
        with pytest.raises(UnknownCollectionError, match="user") as excinfo:
            asyncio.run(registry.finish_initialization())
        assert excinfo.value.referenced_by == 'email'

    def test_invalid_relationship_shape(self):
        registry = StorageRegistry()
        with pytest.raises(RelationshipError, match="email"):
            registry.register_collection('email', {
                'version': V1, 'fields': {}, 'relationships': [{'parent_of': 'user'}],
            })

    def test_ambiguous_relationship_shape(self):
        registry = StorageRegistry()
        with pytest.raises(RelationshipError):
            registry.register_collection('email', {
                'version': V1, 'fields': {},
                'relationships': [{'child_of': 'user', 'single_child_of': 'user'}],
            })

    def test_resolution_is_idempotent(self):
        first = create_registry(_auth_like_collections())
        second = create_registry(_auth_like_collections())

        for name in first.collections:
            assert first.collections[name].pk_index == second.collections[name].pk_index
            assert first.collections[name].relationships_by_alias == second.collections[name].relationships_by_alias
            assert (first.collections[name].reverse_relationships_by_alias
                    == second.collections[name].reverse_relationships_by_alias)


class TestIndicesAndFieldTypes:
    """Tests for index flagging and custom field types."""

    def test_flagging_missing_field(self):
        registry = StorageRegistry()
        with pytest.raises(SchemaError, match="nope.*foo"):
            registry.register_collection('foo', {
                'version': V1, 'fields': {}, 'indices': [{'field': 'nope'}],
            })

    def test_flagging_unknown_relationship_reference(self):
        registry = StorageRegistry()
        with pytest.raises(SchemaError, match="author"):
            registry.register_collection('foo', {
                'version': V1, 'fields': {}, 'indices': [{'field': {'relationship': 'author'}}],
            })

    def test_custom_field_types_are_resolved(self):
        registry = create_registry({
            'page': {
                'version': V1,
                'fields': {
                    'url': {'type': 'url'},
                    'code': {'type': 'random-key'},
                    'title': {'type': 'string'},
                },
            },
        })
        page = registry.collections['page']

        assert page.fields_with_custom_type == ['url', 'code']
        assert isinstance(page.fields['url'].field_object, UrlField)
        assert page.fields['title'].field_object is None

    def test_missing_field_type_handler(self):
        registry = StorageRegistry(field_types=FieldTypeRegistry())
        with pytest.raises(FieldTypeError, match="picture.*media"):
            registry.register_collection('foo', {
                'version': V1, 'fields': {'picture': {'type': 'media'}},
            })

    def test_missing_version(self):
        registry = StorageRegistry()
        with pytest.raises(SchemaError, match="foo"):
            registry.register_collection('foo', {'fields': {}})


class TestLifecycle:
    """Tests for initialization listeners and lifecycle errors."""

    def test_initialized_listeners_are_awaited(self):
        registry = StorageRegistry()
        calls = []

        def sync_listener(reg):
            calls.append(('sync', reg))

        async def async_listener(reg):
            await asyncio.sleep(0)
            calls.append(('async', reg))

        registry.on_initialized(sync_listener)
        registry.on_initialized(async_listener)
        asyncio.run(registry.finish_initialization())

        assert calls == [('sync', registry), ('async', registry)]
        assert registry.initialized

    def test_registered_collection_listener(self):
        registry = StorageRegistry()
        seen = []
        registry.on_registered_collection(lambda definition: seen.append(definition.name))

        registry.register_collections(versioned_collections())

        assert seen == ['foo', 'bar']

    def test_finish_twice(self):
        registry = create_registry(versioned_collections())
        with pytest.raises(RegistryError):
            asyncio.run(registry.finish_initialization())

    def test_register_after_initialization(self):
        registry = create_registry(versioned_collections())
        with pytest.raises(RegistryError, match="baz"):
            registry.register_collection('baz', {'version': V1, 'fields': {}})

    def test_get_collection(self):
        registry = create_registry(versioned_collections())
        assert registry.get_collection('foo').name == 'foo'
        with pytest.raises(UnknownCollectionError):
            registry.get_collection('nope')


def _auth_like_collections():
    return {
        'user': {'version': V1, 'fields': {'identifier': {'type': 'string'}}},
        'email': {
            'version': V1,
            'fields': {'address': {'type': 'string'}},
            'relationships': [{'child_of': 'user'}],
        },
        'code': {
            'version': V1,
            'fields': {},
            'relationships': [{'single_child_of': 'email', 'reverse_alias': 'code'}],
        },
        'group': {'version': V1, 'fields': {}},
        'membership': {
            'version': V1,
            'fields': {},
            'relationships': [{'connects': ['user', 'group']}],
        },
    }
