"""
Tests for EagerLoadPlanner: planning, batching and attachment.
"""

import pytest
import pytest_asyncio

from skeleta.faults import (
    AssociationFault,
    UndeclaredRelationFault,
    UnresolvedAssociationFault,
)
from skeleta.models import (
    BelongsTo,
    Column,
    EagerLoadPlanner,
    HasMany,
    LoadPlan,
    Model,
)


async def seed(nb):
    thor = await nb.Member.create(name="thor")
    loki = await nb.Member.create(name="loki")
    odin = await nb.Member.create(name="odin")

    await nb.Note.create(name="hammer", content="mjolnir", member_id=thor.id, author_id=loki.id)
    await nb.Note.create(name="thunder", content="storms", member_id=thor.id, author_id=thor.id)
    await nb.Note.create(name="tricks", content="illusions", member_id=loki.id, author_id=thor.id)

    return thor, loki, odin


# ── Planning ─────────────────────────────────────────────────────────────────


class TestPlanning:

    @pytest.mark.asyncio
    async def test_plan_tree(self, notebook):
        plan = EagerLoadPlanner.plan(notebook.Member, ["notes", "notes.author", "profile"])
        assert isinstance(plan, LoadPlan)
        assert [step.name for step in plan.steps] == ["notes", "profile"]
        notes = plan.steps[0]
        assert notes.children.model is notebook.Note
        assert [step.name for step in notes.children.steps] == ["author"]
        assert plan.steps[1].children is None

    @pytest.mark.asyncio
    async def test_through_steps_split(self, notebook):
        plan = EagerLoadPlanner.plan(notebook.Note, ["tags", "author"])
        assert [step.name for step in plan.direct_steps] == ["author"]
        assert [step.name for step in plan.through_steps] == ["tags"]

    @pytest.mark.asyncio
    async def test_undeclared_relation(self, notebook):
        with pytest.raises(UndeclaredRelationFault):
            EagerLoadPlanner.plan(notebook.Member, ["comments"])

    @pytest.mark.asyncio
    async def test_undeclared_nested_relation(self, notebook):
        with pytest.raises(UndeclaredRelationFault) as exc_info:
            EagerLoadPlanner.plan(notebook.Member, ["notes.comments"])
        assert exc_info.value.metadata["entity"] == "Note"

    def test_unresolved_association(self):
        class Member(Model):
            name = Column()
            notes = HasMany("Note")

        class Note(Model):
            member_id = Column()

        with pytest.raises(UnresolvedAssociationFault) as exc_info:
            EagerLoadPlanner.plan(Member, ["notes"])
        assert "not been resolved" in exc_info.value.message


# ── Batching ─────────────────────────────────────────────────────────────────


class TestBatching:

    @pytest.mark.asyncio
    async def test_has_many_single_query(self, notebook, db):
        thor, loki, odin = await seed(notebook)
        db.reset()

        members = await notebook.Member.find().with_("notes").order("id")

        assert len(db.selects("notes")) == 1
        assert len(db.queries) == 2
        by_name = {m.name: m for m in members}
        # rows keep the order of the batched fetch
        assert [n.name for n in by_name["thor"].notes] == ["hammer", "thunder"]
        assert [n.name for n in by_name["loki"].notes] == ["tricks"]
        assert by_name["odin"].notes == []

    @pytest.mark.asyncio
    async def test_has_many_order(self, notebook):
        thor, _, _ = await seed(notebook)
        member = await notebook.Member.find_one(id=thor.id).with_("latest_notes")
        assert [n.name for n in member.latest_notes] == ["thunder", "hammer"]

    @pytest.mark.asyncio
    async def test_select_leaves_attributes_unloaded(self, notebook):
        thor, _, _ = await seed(notebook)
        member = await notebook.Member.find_one(id=thor.id).with_("notes")
        note = member.notes[0]

        assert note.is_loaded("name")
        assert note.is_loaded("member_id")
        assert not note.is_loaded("content")
        assert note.content is None

        await note.reload()
        assert note.content in ("mjolnir", "storms")

    @pytest.mark.asyncio
    async def test_belongs_to(self, notebook, db):
        thor, loki, _ = await seed(notebook)
        db.reset()

        notes = await notebook.Note.find().with_("author").order("id")

        assert len(db.selects("members")) == 1
        assert [n.author.name for n in notes] == ["loki", "thor", "thor"]
        # one row per distinct key, shared by the owners
        assert notes[1].author is notes[2].author

    @pytest.mark.asyncio
    async def test_belongs_to_with_narrowed_select(self, notebook, db):
        thor, loki, _ = await seed(notebook)
        db.reset()

        notes = await notebook.Note.find().select("name").with_("author").order("id")

        assert len(db.selects("members")) == 1
        assert [n.author.name for n in notes] == ["loki", "thor", "thor"]
        assert notes[0].is_loaded("author_id")
        assert not notes[0].is_loaded("content")

    @pytest.mark.asyncio
    async def test_narrowed_select_without_eager_load(self, notebook):
        await seed(notebook)
        note = await notebook.Note.find_one(name="hammer").select("name")
        assert not note.is_loaded("author_id")

    @pytest.mark.asyncio
    async def test_belongs_to_without_keys(self, notebook, db):
        await notebook.Note.create(name="orphan")
        db.reset()

        notes = await notebook.Note.find().with_("author")

        assert notes[0].author is None
        assert notes[0].is_association_loaded("author")
        assert db.selects("members") == []

    @pytest.mark.asyncio
    async def test_nested(self, notebook, db):
        thor, loki, _ = await seed(notebook)
        db.reset()

        member = await notebook.Member.find_one(id=thor.id).with_("notes", "notes.author")

        assert len(db.queries) == 3
        authors = sorted(note.author.name for note in member.notes)
        assert authors == ["loki", "thor"]

    @pytest.mark.asyncio
    async def test_has_one(self, notebook):
        thor, loki, _ = await seed(notebook)
        await notebook.Profile.create(member_id=thor.id, bio="god of thunder")

        members = await notebook.Member.find().with_("profile").order("id")

        assert members[0].profile.bio == "god of thunder"
        assert members[1].profile is None

    @pytest.mark.asyncio
    async def test_strict_has_one(self, notebook):
        thor, _, _ = await seed(notebook)
        await notebook.Profile.create(member_id=thor.id, bio="one")
        await notebook.Profile.create(member_id=thor.id, bio="two")

        member = await notebook.Member.find_one(id=thor.id).with_("profile")
        assert member.profile.bio in ("one", "two")

        with pytest.raises(AssociationFault):
            await notebook.Member.find_one(id=thor.id).with_("only_profile")

    @pytest.mark.asyncio
    async def test_no_rows_no_association_queries(self, notebook, db):
        members = await notebook.Member.find(name="nobody").with_("notes", "profile")
        assert members == []
        assert len(db.queries) == 1


# ── Through ──────────────────────────────────────────────────────────────────


class TestThrough:

    @pytest_asyncio.fixture
    async def tagged(self, notebook):
        thor, _, _ = await seed(notebook)
        notes = await notebook.Note.find(member_id=thor.id).order("id")
        hammer, thunder = notes

        red = await notebook.Tag.create(name="red")
        blue = await notebook.Tag.create(name="blue")
        green = await notebook.Tag.create(name="green")

        await notebook.TagMap.create(target_id=hammer.id, target_type=1, tag_id=red.id)
        await notebook.TagMap.create(target_id=hammer.id, target_type=1, tag_id=blue.id)
        # another kind of target sharing the id space
        await notebook.TagMap.create(target_id=hammer.id, target_type=2, tag_id=green.id)
        await notebook.TagMap.create(target_id=thunder.id, target_type=1, tag_id=red.id)

        return hammer, thunder

    @pytest.mark.asyncio
    async def test_through_respects_scope(self, notebook, tagged, db):
        hammer, thunder = tagged
        db.reset()

        notes = await notebook.Note.find(id=[hammer.id, thunder.id]).with_("tags").order("id")

        assert sorted(tag.name for tag in notes[0].tags) == ["blue", "red"]
        assert [tag.name for tag in notes[1].tags] == ["red"]
        assert len(db.selects("tag_maps")) == 1
        assert len(db.selects("tags")) == 1

    @pytest.mark.asyncio
    async def test_through_populates_intermediate(self, notebook, tagged):
        hammer, _ = tagged
        note = await notebook.Note.find_one(id=hammer.id).with_("tags")

        assert note.is_association_loaded("tag_maps")
        assert len(note.tag_maps) == 2
        assert {m.target_type for m in note.tag_maps} == {1}

    @pytest.mark.asyncio
    async def test_through_reuses_loaded_intermediate(self, notebook, tagged, db):
        hammer, _ = tagged
        db.reset()

        note = await notebook.Note.find_one(id=hammer.id).with_("tag_maps", "tags")

        assert len(db.selects("tag_maps")) == 1
        assert sorted(tag.name for tag in note.tags) == ["blue", "red"]
        assert note.tag_maps[0].tag in note.tags

    @pytest.mark.asyncio
    async def test_through_from_parent_level(self, notebook, tagged):
        hammer, _ = tagged
        members = await notebook.Member.find(name="thor").with_("notes", "notes.tags")
        notes = {note.name: note for note in members[0].notes}
        assert sorted(tag.name for tag in notes["hammer"].tags) == ["blue", "red"]


# ── Relation descriptors ─────────────────────────────────────────────────────


class TestRelationDescriptors:

    @pytest.mark.asyncio
    async def test_unloaded_association_reads_none(self, notebook):
        thor, _, _ = await seed(notebook)
        member = await notebook.Member.find_one(id=thor.id)
        assert member.notes is None
        assert not member.is_association_loaded("notes")

    @pytest.mark.asyncio
    async def test_to_dict_includes_loaded_associations(self, notebook):
        thor, _, _ = await seed(notebook)
        member = await notebook.Member.find_one(id=thor.id).with_("profile", "notes")
        data = member.to_dict()
        assert data["name"] == "thor"
        assert data["profile"] is None
        assert {note["name"] for note in data["notes"]} == {"hammer", "thunder"}
        assert "content" not in data["notes"][0]

    def test_belongs_to_descriptor_assignment(self):
        class Member(Model):
            name = Column()

        class Note(Model):
            member_id = Column()
            member = BelongsTo()

        note = Note()
        owner = Member(name="thor")
        note.member = owner
        assert note.member is owner
        assert note.is_association_loaded("member")
