"""
Application Logic Layer for the Fielsdown content platform

This module provides the components that sit between the persistence core
and any front end: identities and sessions, the content store, thread
reconstruction, mention resolution and the ForumAPI that ties them together.
"""

from logic.identity_directory import IdentityDirectory
from logic.session_gate import SessionGate, SessionStatus
from logic.content_store import ContentStore, ContentUnit, AuthorStats
from logic.thread_engine import ThreadEngine, ThreadEntry, ThreadNode
from logic.mention_resolver import MentionResolver, AnnotatedText, TextSegment, MentionSegment
from logic.forum_api import ForumAPI, Profile
from logic.legacy_import import LegacyImporter, ImportReport

__all__ = [
    'IdentityDirectory',
    'SessionGate',
    'SessionStatus',
    'ContentStore',
    'ContentUnit',
    'AuthorStats',
    'ThreadEngine',
    'ThreadEntry',
    'ThreadNode',
    'MentionResolver',
    'AnnotatedText',
    'TextSegment',
    'MentionSegment',
    'ForumAPI',
    'Profile',
    'LegacyImporter',
    'ImportReport',
]
