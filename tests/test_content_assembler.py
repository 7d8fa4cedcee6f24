import pytest
from pydantic import ValidationError

from scriptstream.client.content_assembler import ContentAssembler
from scriptstream.shared.errors import MalformedPayloadError


def test_apply_replaces_instead_of_appending():
    assembler = ContentAssembler()
    assert assembler.apply("title", "Five", False) is True
    assert assembler.apply("title", "Five tips", False) is True
    assert assembler.text("title") == "Five tips"


def test_completed_section_never_regresses():
    assembler = ContentAssembler()
    results = [
        assembler.apply("hook", "Stop", False),
        assembler.apply("hook", "Stop scrolling", False),
        assembler.apply("hook", "Stop scrolling now", True),
        assembler.apply("hook", "garbage", False),
    ]

    assert results == [True, True, True, False]
    hook = assembler.snapshot()["hook"]
    assert hook.content == "Stop scrolling now"
    assert hook.is_complete is True


def test_sections_are_independent():
    assembler = ContentAssembler()
    assembler.apply("script", "body", True)

    snapshot = assembler.snapshot()
    assert snapshot["script"].is_complete
    assert snapshot["title"].content == ""
    assert not snapshot["cta"].is_complete
    assert assembler.is_complete is False


def test_clear_resets_every_section():
    assembler = ContentAssembler()
    for name in ("title", "hook", "script", "cta"):
        assembler.apply(name, name.upper(), True)
    assert assembler.is_complete

    assembler.clear()

    assert all(s.content == "" and not s.is_complete for s in assembler.snapshot().values())
    # After a reset a previously completed section accepts updates again
    assert assembler.apply("title", "new", False) is True


def test_unknown_section_is_malformed():
    with pytest.raises(MalformedPayloadError):
        ContentAssembler().apply("outro", "x", True)


def test_snapshot_cannot_write_back_into_assembler():
    assembler = ContentAssembler()
    assembler.apply("hook", "final", True)
    snapshot = assembler.snapshot()

    with pytest.raises(ValidationError):
        snapshot["hook"].is_complete = False
    snapshot["hook"] = snapshot["hook"].model_copy(update={"is_complete": False})
    snapshot.pop("title")

    assert assembler.apply("hook", "stale", False) is False
    hook = assembler.snapshot()["hook"]
    assert (hook.content, hook.is_complete) == ("final", True)
    assert "title" in assembler.snapshot()
