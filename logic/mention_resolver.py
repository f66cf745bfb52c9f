"""
Mention Resolver for the Fielsdown content platform

Turns literal text into annotated text in which ``@handle`` and
``@b/handle`` references to registered identities become profile links.
The output is data, not markup; escaping and rendering belong to the
presentation layer.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Tuple, Union
from urllib.parse import quote

from logic.identity_directory import IdentityDirectory


logger = logging.getLogger(__name__)


# '@', optional 'b/' prefix in either case, then a handle-charset run.
# The '@' must not follow a word character, so e-mail addresses are left alone.
MENTION_RE = re.compile(r"(?<![A-Za-z0-9_])@(?:[bB]/)?([A-Za-z0-9_]+)")

DEFAULT_PROFILE_URL_TEMPLATE = "/profile.html?user={handle}"


@dataclass(frozen=True)
class TextSegment:
    """Literal text, displayed as-is."""
    text: str


@dataclass(frozen=True)
class MentionSegment:
    """A resolved mention.

    ``text`` is the span exactly as written (original casing), ``handle`` is
    the registered casing, ``profile_ref`` the link target.
    """
    text: str
    handle: str
    profile_ref: str


Segment = Union[TextSegment, MentionSegment]


@dataclass(frozen=True)
class AnnotatedText:
    """Text split into literal and mention segments."""
    segments: Tuple[Segment, ...] = ()

    @property
    def plain(self) -> str:
        """The original text with no annotations."""
        return "".join(segment.text for segment in self.segments)

    @property
    def mentions(self) -> List[MentionSegment]:
        return [s for s in self.segments if isinstance(s, MentionSegment)]


class MentionResolver:
    """
    Resolves mentions against the IdentityDirectory.

    Pure and idempotent: passing an AnnotatedText back in only rescans its
    literal segments, so resolved mentions are never wrapped twice.
    """

    def __init__(
        self,
        directory: IdentityDirectory,
        profile_url_template: str = DEFAULT_PROFILE_URL_TEMPLATE
    ):
        """
        Initialize MentionResolver.

        Args:
            directory: IdentityDirectory used to check that handles exist
            profile_url_template: Link format containing ``{handle}``
        """
        self.directory = directory
        self.profile_url_template = profile_url_template

    def profile_ref(self, handle: str) -> str:
        """Build the profile link for a handle."""
        return self.profile_url_template.format(handle=quote(handle, safe=""))

    def resolve(self, text: Union[str, AnnotatedText, None]) -> AnnotatedText:
        """
        Annotate mentions of registered handles.

        Args:
            text: Literal text, or the output of a previous resolve

        Returns:
            AnnotatedText with adjacent literal segments merged
        """
        if text is None:
            return AnnotatedText()

        if isinstance(text, AnnotatedText):
            source = text.segments
        else:
            source = (TextSegment(text),)

        segments: List[Segment] = []
        preceding = ""
        for segment in source:
            if isinstance(segment, MentionSegment):
                segments.append(segment)
            else:
                segments.extend(self._scan(segment.text, preceding))
            if segment.text:
                preceding = segment.text[-1]

        annotated = AnnotatedText(tuple(self._merge(segments)))
        logger.debug(f"Resolved {len(annotated.mentions)} mentions")
        return annotated

    def _scan(self, text: str, preceding: str = "") -> List[Segment]:
        # preceding is the character just before text, so the look-behind
        # sees the same context on every pass
        source = preceding + text
        segments: List[Segment] = []
        cursor = len(preceding)

        for match in MENTION_RE.finditer(source, cursor):
            identity = self.directory.lookup(match.group(1))
            if identity is None:
                # Unknown handle: leave the literal text, no broken link
                continue

            if match.start() > cursor:
                segments.append(TextSegment(source[cursor:match.start()]))
            segments.append(MentionSegment(
                text=match.group(0),
                handle=identity.handle,
                profile_ref=self.profile_ref(identity.handle),
            ))
            cursor = match.end()

        if cursor < len(source):
            segments.append(TextSegment(source[cursor:]))

        return segments

    @staticmethod
    def _merge(segments: List[Segment]) -> List[Segment]:
        merged: List[Segment] = []
        for segment in segments:
            if not segment.text:
                continue
            if (isinstance(segment, TextSegment) and merged
                    and isinstance(merged[-1], TextSegment)):
                merged[-1] = TextSegment(merged[-1].text + segment.text)
            else:
                merged.append(segment)
        return merged
