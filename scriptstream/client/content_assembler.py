"""
MODULE OVERVIEW:
Rebuilds the four generated sections (title, hook, script, cta) from the chunk stream.

WHAT IS HAPPENING HERE:
The server sends the full accumulated text of a section with every chunk, not a
delta, so a chunk replaces what we hold. Once a section has been marked complete
it is frozen for the rest of the generation: a late or duplicated chunk must not
roll finished text back to a partial one. Sections are independent streams.
"""
from scriptstream.shared.errors import MalformedPayloadError
from scriptstream.shared.models import SECTIONS, SectionContent


class ContentAssembler:
    def __init__(self):
        self._sections: dict[str, SectionContent] = {}
        self.clear()

    def apply(self, section: str, content: str, is_complete: bool) -> bool:
        """Returns False when the update was ignored because the section is already complete."""
        if section not in self._sections:
            raise MalformedPayloadError("content_chunk", f"unknown section '{section}'")
        if self._sections[section].is_complete:
            return False
        self._sections[section] = SectionContent(content=content, is_complete=is_complete)
        return True

    def snapshot(self) -> dict[str, SectionContent]:
        # SectionContent is frozen and only ever replaced, so a shallow copy is a stable view
        return dict(self._sections)

    def clear(self) -> None:
        self._sections = {name: SectionContent() for name in SECTIONS}

    @property
    def is_complete(self) -> bool:
        return all(s.is_complete for s in self._sections.values())

    def text(self, section: str) -> str:
        return self._sections[section].content
