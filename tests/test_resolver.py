"""Tests for m3ukeeper.resolver: lookup chain and user decisions."""

import pytest

from m3ukeeper.playlist import PlaylistEntry, entry_id, split_line
from m3ukeeper.resolver import (
    EXIT,
    REMOVE,
    SKIP,
    Action,
    MediaFolder,
    OutcomeKind,
    Resolver,
    ResolverSession,
    rename,
)


def _entry(orig, path=""):
    return PlaylistEntry(id=entry_id(orig), orig=orig, path=path, name=split_line(orig)[1])


class FakePrompter:
    """Answers questions from a script and checks answers like a user would see."""

    def __init__(self, action, answer=None):
        self.action = action
        self.answer = answer
        self.chosen = 0
        self.errors = []

    def choose(self, entry):
        self.chosen += 1
        return self.action

    def _answer(self, check):
        if not self.answer:
            return ""
        error = check(self.answer)
        self.errors.append(error)
        # A user who gets an error gives up with an empty answer
        return "" if error else self.answer

    def ask_path(self, entry, check):
        return self._answer(check)

    def ask_relocation(self, entry, base, check):
        return self._answer(check)

    def ask_rename(self, entry, check):
        if not self.answer:
            return None
        error = check(*self.answer)
        self.errors.append(error)
        return None if error else self.answer


@pytest.fixture
def media(media_dir):
    return MediaFolder(str(media_dir))


class TestMediaFolder:
    def test_buckets_sorted(self, media):
        assert media.buckets() == ["[0-9]", "[A-M]", "[N-Z]"]

    def test_match_is_case_insensitive(self, media):
        assert media.match("apple.mp3") == "[A-M]"
        assert media.match("Zebra.mp3") == "[N-Z]"
        assert media.match("1999.mp3") == "[0-9]"

    def test_no_match(self, media):
        assert media.match("_intro.mp3") == ""
        assert media.match("") == ""

    def test_locate_falls_back_to_escape_dir(self, media, media_dir):
        assert media.locate("_intro.mp3") == str(media_dir / "[0-9]" / "_intro.mp3")
        assert media.locate("apple.mp3") == str(media_dir / "[A-M]" / "apple.mp3")

    def test_invalid_bucket_pattern_is_ignored(self, media_dir):
        (media_dir / "[z-a]").mkdir()
        media = MediaFolder(str(media_dir))
        assert media.match("zebra.mp3") == "[N-Z]"
        assert media.match("_intro.mp3") == ""

    def test_non_bucket_dirs_ignored(self, media_dir):
        (media_dir / "misc").mkdir()
        assert "misc" not in MediaFolder(str(media_dir)).buckets()


class TestRename:
    def test_rename(self):
        assert rename(r"^(\d+) ", r"\1 - ", "01 Song.mp3") == "01 - Song.mp3"

    def test_rename_is_case_sensitive(self):
        assert rename("song", "track", "Song.mp3") == "Song.mp3"


class TestLookupChain:
    def test_direct(self, media):
        outcome = Resolver(media).resolve(_entry("a.mp3", "/x/a.mp3"))
        assert outcome.kind is OutcomeKind.RESOLVED
        assert outcome.path == "/x/a.mp3"

    def test_relocated(self, media, root, make_file):
        target = make_file(root / "new" / "song.mp3")
        session = ResolverSession(dir_map={"old/dir": str(root / "new")})
        outcome = Resolver(media, session=session).resolve(_entry("old/dir/song.mp3"))
        assert outcome.path == str(target)

    def test_renamed(self, media, root, make_file):
        target = make_file(root / "lib" / "pear.mp3")
        session = ResolverSession(rename_map={"apple": "pear"})
        outcome = Resolver(media, session=session).resolve(_entry(f"{root}/lib/apple.mp3"))
        assert outcome.path == str(target)

    def test_media_folder(self, media, media_dir, make_file):
        target = make_file(media_dir / "[A-M]" / "apple.mp3")
        outcome = Resolver(media).resolve(_entry("C:\\Old\\apple.mp3"))
        assert outcome.path == str(target)

    def test_relative_mapping_uses_base(self, media, media_dir, make_file):
        target = make_file(media_dir / "moved" / "song.mp3")
        session = ResolverSession(dir_map={"old": "moved"})
        outcome = Resolver(media, session=session).resolve(_entry("old/song.mp3"))
        assert outcome.path == str(target)


class TestDecide:
    @pytest.mark.parametrize("action,expected", [("skip", SKIP), ("remove", REMOVE), ("exit", EXIT)])
    def test_default_action(self, media, action, expected):
        assert Resolver(media, action=action).resolve(_entry("gone.mp3")) == expected

    def test_default_action_never_prompts(self, media):
        prompter = FakePrompter(Action.UPDATE)
        Resolver(media, action="skip", prompter=prompter).resolve(_entry("gone.mp3"))
        assert prompter.chosen == 0

    def test_ask_without_prompter_skips(self, media):
        assert Resolver(media).resolve(_entry("gone.mp3")) == SKIP

    def test_unknown_action(self, media):
        with pytest.raises(ValueError):
            Resolver(media, action="retry")

    @pytest.mark.parametrize("action,expected", [(Action.SKIP, SKIP), (Action.REMOVE, REMOVE), (Action.EXIT, EXIT)])
    def test_user_choice(self, media, action, expected):
        resolver = Resolver(media, prompter=FakePrompter(action))
        assert resolver.resolve(_entry("gone.mp3")) == expected

    def test_update(self, media, root, make_file):
        target = make_file(root / "found.mp3")
        prompter = FakePrompter(Action.UPDATE, str(target))
        outcome = Resolver(media, prompter=prompter).resolve(_entry("gone.mp3"))
        assert outcome.path == str(target)
        assert prompter.errors == [None]

    def test_update_empty_answer_skips(self, media):
        resolver = Resolver(media, prompter=FakePrompter(Action.UPDATE))
        assert resolver.resolve(_entry("gone.mp3")) == SKIP

    def test_update_check_rejects_missing_file(self, media, root):
        prompter = FakePrompter(Action.UPDATE, str(root / "nope.mp3"))
        outcome = Resolver(media, prompter=prompter).resolve(_entry("gone.mp3"))
        assert prompter.errors[0].startswith("Not found")
        assert outcome == SKIP

    def test_relocate_is_remembered(self, media, root, make_file):
        make_file(root / "new" / "one.mp3")
        make_file(root / "new" / "two.mp3")
        prompter = FakePrompter(Action.RELOCATE, str(root / "new"))
        resolver = Resolver(media, prompter=prompter)

        first = resolver.resolve(_entry("old/one.mp3"))
        second = resolver.resolve(_entry("old/two.mp3"))

        assert first.path == str(root / "new" / "one.mp3")
        assert second.path == str(root / "new" / "two.mp3")
        assert prompter.chosen == 1
        assert resolver.session.dir_map == {"old": str(root / "new")}

    def test_rename_is_remembered(self, media, root, make_file):
        make_file(root / "lib" / "01 - one.mp3")
        make_file(root / "lib" / "02 - two.mp3")
        prompter = FakePrompter(Action.RENAME, (r"^(\d+) ", r"\1 - "))
        resolver = Resolver(media, prompter=prompter)

        first = resolver.resolve(_entry(f"{root}/lib/01 one.mp3"))
        second = resolver.resolve(_entry(f"{root}/lib/02 two.mp3"))

        assert first.path == str(root / "lib" / "01 - one.mp3")
        assert second.path == str(root / "lib" / "02 - two.mp3")
        assert prompter.chosen == 1
        assert prompter.errors == [None]

    def test_rename_invalid_pattern_reported(self, media, root):
        prompter = FakePrompter(Action.RENAME, ("(", "x"))
        outcome = Resolver(media, prompter=prompter).resolve(_entry(f"{root}/lib/a.mp3"))
        assert prompter.errors[0].startswith("Invalid pattern")
        assert outcome == SKIP
        assert prompter.chosen == 1

    def test_sessions_are_independent(self, media):
        a = Resolver(media)
        b = Resolver(media)
        a.session.dir_map["x"] = "y"
        assert b.session.dir_map == {}
