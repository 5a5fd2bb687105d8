"""
Tests for the entity runtime: accessors, coercion, validation and persistence.
"""

import datetime

import pytest
import pytest_asyncio

from skeleta.faults import (
    CoercionFault,
    FaultDomain,
    MissingPrimaryKeyFault,
    ModelNotFoundFault,
    QueryFault,
    ValidationFault,
)
from skeleta.models import AttributeRegistry, Column, DataTypes, Model, ModelRegistry, Query


@pytest_asyncio.fixture
async def hero(db):
    class Hero(Model):
        name = Column(allow_null=False)
        status = Column(
            DataTypes.INTEGER,
            default=1,
            validate={"isIn": {"args": [["1", "2"]], "msg": "Error status"}},
        )
        realm = Column(validate={"notIn": [["midgard"]]})
        lower_case_name = Column(
            DataTypes.VIRTUAL,
            get=lambda self: self.name.lower() if self.name else None,
        )
        created_at = Column()
        updated_at = Column()

        @name.setter
        def name(self, value):
            self.attribute("name", "thor" if value == "zeus" else value)

        @name.getter
        def name(self):
            value = self.attribute("name")
            return value.upper() if value else value

    await Hero.sync()
    return Hero


# ── Attribute access ─────────────────────────────────────────────────────────


class TestAccessors:

    @pytest.mark.asyncio
    async def test_setter_and_getter(self, hero):
        h = hero(name="zeus")
        assert h.attribute("name") == "thor"
        assert h.name == "THOR"

    @pytest.mark.asyncio
    async def test_accessors_survive_reload(self, hero):
        h = await hero.create(name="zeus")
        await h.reload()
        assert h.attribute("name") == "thor"
        assert h.name == "THOR"

    @pytest.mark.asyncio
    async def test_virtual_attribute(self, hero):
        h = hero(name="Loki")
        assert h.lower_case_name == "loki"
        assert h.to_dict()["lower_case_name"] == "loki"

    @pytest.mark.asyncio
    async def test_virtual_without_setter_rejects_writes(self, hero):
        h = hero(name="Loki")
        with pytest.raises(CoercionFault):
            h.lower_case_name = "x"

    @pytest.mark.asyncio
    async def test_defaults_applied(self, hero):
        assert hero().status == 1

    @pytest.mark.asyncio
    async def test_unknown_keyword(self, hero):
        with pytest.raises(TypeError):
            hero(power="thunder")

    def test_attribute_registered_after_class_creation(self):
        class Post(Model):
            title = Column()

        AttributeRegistry.register(Post, "summary", {"type": DataTypes.TEXT})

        post = Post(title="a")
        post.summary = "short"
        assert post.summary == "short"
        assert post.changed("summary")


# ── Coercion ─────────────────────────────────────────────────────────────────


class TestCoercion:

    @pytest_asyncio.fixture
    async def gauge(self, db):
        class Gauge(Model):
            level = Column(DataTypes.INTEGER)
            reading = Column(DataTypes.INTEGER, validate={"is_numeric": True})

        await Gauge.sync()
        return Gauge

    @pytest.mark.asyncio
    async def test_cast_on_assignment(self, hero):
        h = hero(name="thor", status="2")
        assert h.status == 2

    @pytest.mark.asyncio
    async def test_bad_value_fails_on_save(self, gauge):
        g = gauge(level="two")
        assert g.level == "two"
        assert g.changed("level")

        with pytest.raises(CoercionFault) as exc_info:
            await g.save()
        fault = exc_info.value
        assert fault.attribute == "level"
        assert fault.kind == "integer"
        assert await gauge.count() == 0
        assert g.changed("level")

    @pytest.mark.asyncio
    async def test_validation_runs_before_coercion(self, gauge):
        with pytest.raises(ValidationFault) as exc_info:
            await gauge.create(reading="abc")
        assert exc_info.value.rule == "is_numeric"
        assert await gauge.count() == 0

    @pytest.mark.asyncio
    async def test_reassignment_clears_bad_value(self, gauge):
        g = gauge(level="two")
        g.level = "3"
        await g.save()
        stored = await gauge.find_by_pk(g.id)
        assert stored.level == 3

    @pytest.mark.asyncio
    async def test_timestamps_cast_from_strings(self, hero):
        h = hero(name="thor", created_at="2021-01-02 03:04:05")
        assert h.created_at == datetime.datetime(2021, 1, 2, 3, 4, 5)

    def test_mutable_default_not_shared(self):
        class Doc(Model):
            labels = Column(default=[])

        a, b = Doc(), Doc()
        a.labels.append("x")
        assert b.labels == []


# ── Validation ───────────────────────────────────────────────────────────────


class TestValidation:

    @pytest.mark.asyncio
    async def test_not_null(self, hero):
        with pytest.raises(ValidationFault) as exc_info:
            await hero.create()
        assert exc_info.value.message == "name cannot be null"
        assert await hero.count() == 0

    @pytest.mark.asyncio
    async def test_rule_message(self, hero):
        with pytest.raises(ValidationFault) as exc_info:
            await hero.create(name="thor", realm="midgard")
        assert exc_info.value.message == "Validation not_in on realm failed"

    @pytest.mark.asyncio
    async def test_custom_message(self, hero):
        with pytest.raises(ValidationFault) as exc_info:
            await hero.create(name="thor", status=3)
        assert exc_info.value.message == "Error status"

    @pytest.mark.asyncio
    async def test_no_partial_update(self, hero):
        h = await hero.create(name="thor")
        h.realm = "midgard"
        h.status = 2
        with pytest.raises(ValidationFault):
            await h.save()

        assert h.changed() == ["status", "realm"]
        stored = await hero.find_by_pk(h.id)
        assert stored.status == 1
        assert stored.realm is None


# ── Persistence ──────────────────────────────────────────────────────────────


class TestPersistence:

    @pytest.mark.asyncio
    async def test_create_assigns_pk_and_timestamps(self, hero):
        h = await hero.create(name="thor")
        assert h.id is not None
        assert isinstance(h.created_at, datetime.datetime)
        assert h.created_at == h.updated_at
        assert h.changed() == []

    @pytest.mark.asyncio
    async def test_update_writes_dirty_and_touches_updated_at(self, hero):
        h = await hero.create(name="thor", created_at=datetime.datetime(2020, 1, 1))
        before = h.updated_at
        h.status = 2
        assert h.changed() == ["status"]
        await h.save()

        assert h.changed() == []
        assert h.updated_at >= before
        stored = await hero.find_one(h.id)
        assert stored.status == 2
        assert stored.created_at == datetime.datetime(2020, 1, 1)

    @pytest.mark.asyncio
    async def test_save_without_changes_is_noop(self, hero):
        h = await hero.create(name="thor")
        stamp = h.updated_at
        await h.save()
        assert h.updated_at == stamp

    @pytest.mark.asyncio
    async def test_reload_discards_local_changes(self, hero):
        h = await hero.create(name="thor")
        h.status = 2
        await h.reload()
        assert h.status == 1
        assert h.changed() == []

    @pytest.mark.asyncio
    async def test_missing_primary_key(self, hero):
        with pytest.raises(MissingPrimaryKeyFault) as exc_info:
            await hero(name="thor").reload()
        assert exc_info.value.domain is FaultDomain.MODEL
        assert not exc_info.value.retryable

        h = await hero.create(name="thor")
        h.attribute("id", None)
        h.status = 2
        with pytest.raises(MissingPrimaryKeyFault) as exc_info:
            await h.save()
        assert exc_info.value.operation == "update"

    @pytest.mark.asyncio
    async def test_reload_missing_row(self, hero):
        h = await hero.create(name="thor")
        await hero.truncate()
        with pytest.raises(ModelNotFoundFault):
            await h.reload()

    @pytest.mark.asyncio
    async def test_boolean_round_trip(self, db):
        class Flag(Model):
            is_private = Column(default=True)

        await Flag.sync()
        flag = await Flag.create()
        stored = await Flag.find_by_pk(flag.id)
        assert stored.is_private is True

    @pytest.mark.asyncio
    async def test_json_round_trip(self, db):
        class Setting(Model):
            payload = Column(DataTypes.JSON)

        await Setting.sync()
        setting = await Setting.create(payload={"theme": "dark", "size": [1, 2]})
        stored = await Setting.find_by_pk(setting.id)
        assert stored.payload == {"theme": "dark", "size": [1, 2]}

    @pytest.mark.asyncio
    async def test_custom_primary_key(self, db):
        class Post(Model):
            slug = Column(DataTypes.STRING(32), primary_key=True)
            title = Column()

        await Post.sync()
        await Post.create(slug="hello", title="Hello")
        post = await Post.find_by_pk("hello")
        assert post.title == "Hello"

    @pytest.mark.asyncio
    async def test_equality_by_primary_key(self, hero):
        h = await hero.create(name="thor")
        again = await hero.find_by_pk(h.id)
        assert h == again
        assert hero(name="a") != hero(name="a")


# ── Queries ──────────────────────────────────────────────────────────────────


class TestQueries:

    @pytest_asyncio.fixture
    async def heroes(self, hero):
        for name, status in (("thor", 1), ("loki", 2), ("odin", 1)):
            await hero.create(name=name, status=status)
        return hero

    @pytest.mark.asyncio
    async def test_find_conditions(self, heroes):
        found = await heroes.find(status=1).order("name")
        assert [h.attribute("name") for h in found] == ["odin", "thor"]

    @pytest.mark.asyncio
    async def test_find_in(self, heroes):
        found = await heroes.find(name=["thor", "loki"])
        assert len(found) == 2
        assert await heroes.find(name=[]) == []

    @pytest.mark.asyncio
    async def test_raw_clause(self, heroes):
        found = await heroes.find("status > ?", 1)
        assert [h.attribute("name") for h in found] == ["loki"]

    @pytest.mark.asyncio
    async def test_is_null(self, heroes):
        assert await heroes.find(realm=None).count() == 3

    @pytest.mark.asyncio
    async def test_limit_offset(self, heroes):
        found = await heroes.find().order("id").limit(1).offset(1)
        assert [h.attribute("name") for h in found] == ["loki"]
        found = await heroes.find().order("id").offset(2)
        assert [h.attribute("name") for h in found] == ["odin"]

    @pytest.mark.asyncio
    async def test_find_one(self, heroes):
        h = await heroes.find_one(name="loki")
        assert h.status == 2
        assert await heroes.find_one(name="nobody") is None

    @pytest.mark.asyncio
    async def test_select(self, heroes):
        h = await heroes.find_one(name="loki").select("status")
        assert h.is_loaded("id")
        assert h.is_loaded("status")
        assert not h.is_loaded("name")

    @pytest.mark.asyncio
    async def test_async_iteration(self, heroes):
        names = [h.attribute("name") async for h in heroes.find().order("-id")]
        assert names == ["odin", "loki", "thor"]

    @pytest.mark.asyncio
    async def test_count(self, heroes):
        assert await heroes.count() == 3
        assert await heroes.count(status=1) == 2

    @pytest.mark.asyncio
    async def test_chain_is_immutable(self, heroes):
        base = heroes.find(status=1)
        limited = base.limit(1)
        assert isinstance(limited, Query)
        assert len(await base) == 2
        assert len(await limited) == 1

    @pytest.mark.asyncio
    async def test_unknown_attribute(self, heroes):
        with pytest.raises(QueryFault):
            heroes.find(power="thunder")
        with pytest.raises(QueryFault):
            heroes.find().order("lower_case_name")

    def test_sql_rendering(self):
        class Post(Model):
            title = Column()
            body = Column(DataTypes.TEXT)

        sql = Post.find(title="a").select("title").order("-id").limit(5).sql
        assert sql == (
            'SELECT "id", "title" FROM "posts" WHERE ("title" = ?) '
            'ORDER BY "id" DESC LIMIT 5'
        )


# ── Table management ─────────────────────────────────────────────────────────


class TestTables:

    @pytest.mark.asyncio
    async def test_create_tables(self, db):
        class Member(Model):
            name = Column()

        class Post(Model):
            member_id = Column()

        statements = await ModelRegistry.create_tables()
        assert len(statements) == 2
        assert await db.table_exists("members")
        assert await db.table_exists("posts")

    @pytest.mark.asyncio
    async def test_shared_table_created_once(self, db):
        class Comment(Model):
            table = "contents"
            body = Column()

        class Reply(Comment):
            pass

        statements = await ModelRegistry.create_tables()
        assert len(statements) == 1

    @pytest.mark.asyncio
    async def test_sync_force_recreates(self, hero):
        await hero.create(name="thor")
        await hero.sync(force=True)
        assert await hero.count() == 0
