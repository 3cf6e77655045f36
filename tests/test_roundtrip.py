"""End-to-end: dump from one database, load into another."""

import io
import logging

from sqlalchemy import select

from conftest import Admin, Author, Comment, Domain, Email, Note, Post, Profile, User, WebPage
from db_replicate.dumper import Dumper
from db_replicate.loader import Loader
from db_replicate.transport import JsonLinesWriter, PickleWriter, read_json_lines, read_pickle


def dump_to_pickle(store, *objects, **options) -> io.BytesIO:
    buf = io.BytesIO()
    with Dumper(store) as dumper:
        dumper.listen(PickleWriter(buf))
        dumper.dump(*objects, **options)
    buf.seek(0)
    return buf


class TestUserGraph:
    """The user 7 / profile 3 / emails 10, 11 scenario."""

    def test_four_records_with_remapped_references(
        self, source_store, target_store, target_session, user_graph
    ) -> None:
        """Four new target records, all pointing at the new user."""
        target_session.add(User(id=1, login="someone-else", kind="user"))
        target_session.commit()

        tuples = list(read_pickle(dump_to_pickle(source_store, user_graph)))
        assert [(t[0], t[1]) for t in tuples] == [("User", 7), ("Profile", 3), ("Email", 10), ("Email", 11)]

        loader = Loader(target_store)
        loader.read(tuples)

        user = target_session.scalars(select(User).where(User.login == "ada")).one()
        profile = target_session.scalars(select(Profile)).one()
        emails = target_session.scalars(select(Email).order_by(Email.id)).all()

        assert user.id != 7
        assert profile.user_id == user.id
        assert [e.user_id for e in emails] == [user.id, user.id]
        assert [e.address for e in emails] == ["ada@example.com", "ada@work.example.com"]
        assert loader.failures == {}

    def test_json_lines_round_trip(self, source_store, target_store, target_session, user_graph) -> None:
        """The JSON lines transport carries the same graph."""
        buf = io.StringIO()
        with Dumper(source_store) as dumper:
            dumper.listen(JsonLinesWriter(buf))
            dumper.dump(user_graph)
        buf.seek(0)

        Loader(target_store).read(read_json_lines(buf))

        user = target_session.scalars(select(User)).one()
        assert user.profile.bio == "mathematician"
        assert len(user.emails) == 2

    def test_reload_does_not_duplicate_natural_keyed_records(
        self, source_store, target_store, target_session, user_graph
    ) -> None:
        """Loading the same dump twice matches the user by login."""
        buf = dump_to_pickle(source_store, user_graph)
        tuples = list(read_pickle(buf))
        Loader(target_store).read(list(tuples))
        Loader(target_store).read(list(tuples))

        assert len(target_session.scalars(select(User)).all()) == 1


class TestOwnerReachedThroughDependents:
    """A root whose owner's dependents point back at the root."""

    def test_comment_points_at_loaded_post(
        self, source_store, target_store, source_session, target_session, caplog
    ) -> None:
        """Post, Author and Comment all load with their links remapped."""
        target_session.add(Author(id=1, name="someone-else"))
        target_session.commit()

        author = Author(id=1, name="Ann")
        post = Post(id=2, title="Hello", author=author)
        source_session.add_all([post, Comment(id=3, body="Nice", author=author, post=post)])
        source_session.commit()

        with caplog.at_level(logging.ERROR):
            Loader(target_store).read(read_pickle(dump_to_pickle(source_store, post)))

        loaded_author = target_session.scalars(select(Author).where(Author.name == "Ann")).one()
        loaded_post = target_session.scalars(select(Post)).one()
        comment = target_session.scalars(select(Comment)).one()
        assert loaded_post.author_id == loaded_author.id
        assert comment.post_id == loaded_post.id
        assert comment.author_id == loaded_author.id
        assert caplog.records == []


class TestManyToMany:
    """Membership snapshots across databases."""

    def test_membership_replaced_on_target(
        self, source_store, target_store, source_session, target_session, user_graph
    ) -> None:
        """Target membership becomes exactly the source membership."""
        user_graph.domains.extend([Domain(id=1, host="a.example"), Domain(id=2, host="b.example")])
        source_session.commit()

        stale = User(login="ada", kind="user")
        stale.domains.append(Domain(host="stale.example"))
        target_session.add(stale)
        target_session.commit()

        Loader(target_store).read(read_pickle(dump_to_pickle(source_store, user_graph, associations=["domains"])))

        target_session.expire_all()
        user = target_session.scalars(select(User)).one()
        assert [d.host for d in user.domains] == ["a.example", "b.example"]


class TestUnresolved:
    """Dangling references across a partial dump."""

    def test_email_without_its_user(self, source_store, target_store, source_session, target_session, user_graph, caplog) -> None:
        """An email dumped alone loads with a null user and one error."""
        buf = dump_to_pickle(source_store, source_session.get(Email, 10))

        with caplog.at_level(logging.ERROR):
            Loader(target_store).read(read_pickle(buf))

        email = target_session.scalars(select(Email)).one()
        assert email.user_id is None
        assert [r.getMessage() for r in caplog.records] == ["error: User:7 missing from keymap"]


class TestPolymorphicAndInheritance:
    """Typed foreign keys and single-table inheritance."""

    def test_note_on_admin_through_base_type(
        self, source_store, target_store, source_session, target_session
    ) -> None:
        """A note typed at User resolves to the loaded Admin."""
        admin = Admin(id=8, login="root")
        source_session.add_all([admin, Note(id=5, body="hi", notable_id=8, notable_type="User")])
        source_session.commit()

        Loader(target_store).read(read_pickle(dump_to_pickle(source_store, source_session.get(Note, 5))))

        loaded_admin = target_session.scalars(select(Admin)).one()
        note = target_session.scalars(select(Note)).one()
        assert note.notable_id == loaded_admin.id
        assert note.notable_type == "User"

    def test_null_polymorphic_owner(self, source_store, target_store, source_session, target_session) -> None:
        """A note with no owner loads with both fields null."""
        source_session.add(Note(id=6, body="orphan"))
        source_session.commit()

        Loader(target_store).read(read_pickle(dump_to_pickle(source_store, source_session.get(Note, 6))))

        note = target_session.scalars(select(Note)).one()
        assert (note.notable_id, note.notable_type) == (None, None)


class TestNonIdentityForeignKey:
    """Keys that point at a non-primary column."""

    def test_host_copied_verbatim(self, source_store, target_store, source_session, target_session) -> None:
        """The page keeps its host string and finds the loaded domain."""
        source_session.add_all([Domain(id=1, host="example.com"), WebPage(id=2, path="/", domain_host="example.com")])
        source_session.commit()

        Loader(target_store).read(read_pickle(dump_to_pickle(source_store, source_session.get(WebPage, 2))))

        page = target_session.scalars(select(WebPage)).one()
        assert page.domain_host == "example.com"
        assert page.domain.host == "example.com"
