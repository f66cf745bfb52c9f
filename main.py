"""Fielsdown Command-Line Entry Point.

Command-line front end for the Fielsdown content platform. It handles
configuration, logging, initialization of core services, and dispatches
one command per invocation. The session token of the last login is kept
in a file so consecutive commands act as the same identity.
"""

import sys
import argparse
import getpass
import logging
import logging.handlers
from datetime import timedelta
from pathlib import Path
from typing import List, Optional

# Import configuration
from config.config_manager import ConfigManager

# Import core components
from core.crypto_manager import CryptoManager, CryptoError
from core.db_manager import DBManager
from core.error_handler import BBSError, ErrorSeverity, get_error_handler
from core.media_validator import MediaValidator

# Import logic layer
from logic.content_store import ContentStore, ContentUnit
from logic.forum_api import ForumAPI
from logic.identity_directory import IdentityDirectory
from logic.legacy_import import LegacyImporter, LegacyImportError
from logic.mention_resolver import AnnotatedText, MentionResolver, MentionSegment
from logic.session_gate import SessionGate
from logic.thread_engine import ThreadEngine


# Configure logging
def setup_logging(log_level: str, log_path: Path, max_bytes: int = 10485760,
                  backup_count: int = 5):
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_path: Path to log file
        max_bytes: Size at which the log file is rotated
        backup_count: Number of rotated files kept
    """
    # Ensure log directory exists
    log_path.parent.mkdir(parents=True, exist_ok=True)

    # Command output goes to stdout, so log records go to stderr
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.handlers.RotatingFileHandler(
                log_path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8'
            ),
            logging.StreamHandler(sys.stderr)
        ],
        force=True
    )

    logger = logging.getLogger(__name__)
    logger.debug(f"Logging initialized at level {log_level}")
    logger.debug(f"Log file: {log_path}")


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog='fielsdown',
        description='Fielsdown - boards, posts and threaded comments',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Register with a generated handle and password
  fielsdown register --generate

  # Create a board and post into it
  fielsdown create-board tech "Hardware and software"
  fielsdown post tech "Hello @b/novawolf1234" --media cat.png

  # Reply to a comment and show the thread
  fielsdown comment --board tech "Agreed" --reply-to <comment-id>
  fielsdown thread --board tech
        """
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        metavar='PATH',
        help='Path to configuration file'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Override logging level from config'
    )

    commands = parser.add_subparsers(dest='command', required=True, metavar='COMMAND')

    register = commands.add_parser('register', help='Register a new handle and log in')
    register.add_argument('handle', nargs='?', help='Handle (generated when omitted)')
    register.add_argument('--password', help='Password (prompted when omitted)')
    register.add_argument('--generate', action='store_true',
                          help='Generate a password and print it')

    login = commands.add_parser('login', help='Log in')
    login.add_argument('handle')
    login.add_argument('--password', help='Password (prompted when omitted)')

    commands.add_parser('logout', help='Close the current session')
    commands.add_parser('whoami', help='Show the current session')
    commands.add_parser('boards', help='List boards, newest first')
    commands.add_parser('users', help='List the community, newest first')
    commands.add_parser('purge-sessions', help='Delete expired sessions')

    create_board = commands.add_parser('create-board', help='Create a board')
    create_board.add_argument('name')
    create_board.add_argument('description', nargs='?', default='')

    posts = commands.add_parser('posts', help='List the posts of a board, newest first')
    posts.add_argument('board', help='Board name')

    post = commands.add_parser('post', help='Create a post in a board')
    post.add_argument('board', help='Board name')
    post.add_argument('content', nargs='?', default='')
    post.add_argument('--media', help='Image/video path, URI or data: URL')
    post.add_argument('--media-type', help='Mime type of the attachment')

    comment = commands.add_parser('comment', help='Comment on a board or post')
    _add_unit_arguments(comment)
    comment.add_argument('content', nargs='?', default='')
    comment.add_argument('--reply-to', metavar='COMMENT_ID', help='Parent comment id')
    comment.add_argument('--media', help='Image/video path, URI or data: URL')
    comment.add_argument('--media-type', help='Mime type of the attachment')

    thread = commands.add_parser('thread', help='Show the comments of a board or post')
    _add_unit_arguments(thread)

    profile = commands.add_parser('profile', help='Show or edit a profile')
    profile.add_argument('handle', nargs='?', help='Handle to show (default: yourself)')
    profile.add_argument('--avatar', help='New avatar URI (empty resets it)')
    profile.add_argument('--bio', help='New bio')

    import_legacy = commands.add_parser('import-legacy',
                                        help='Import a legacy browser-storage snapshot')
    import_legacy.add_argument('snapshot', type=Path, help='JSON snapshot file')

    return parser.parse_args(argv)


def _add_unit_arguments(parser: argparse.ArgumentParser) -> None:
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument('--board', metavar='NAME', help='Board name')
    target.add_argument('--post', metavar='POST_ID', help='Post id')


def load_session_secret(config_manager: ConfigManager) -> bytes:
    """
    Get the token signing secret from config, or from the secret file.

    Returns:
        Secret bytes
    """
    security_config = config_manager.get_security_config()
    if security_config.session_secret:
        return security_config.session_secret.encode('utf-8')
    secret_path = config_manager.expand_path(security_config.secret_path)
    return CryptoManager.load_or_create_secret(secret_path)


def build_forum(config_manager: ConfigManager,
                crypto_manager: Optional[CryptoManager] = None) -> ForumAPI:
    """
    Initialize the database and every core component from configuration.

    Args:
        config_manager: Loaded configuration
        crypto_manager: Optional CryptoManager (built from the secret when None)

    Returns:
        ForumAPI ready for use
    """
    logger = logging.getLogger(__name__)

    storage_config = config_manager.get_storage_config()
    security_config = config_manager.get_security_config()
    content_config = config_manager.get_content_config()
    identity_config = config_manager.get_identity_config()

    # Initialize database
    db_path = config_manager.expand_path(storage_config.db_path)
    db_manager = DBManager(db_path)
    db_manager.initialize_database()
    logger.debug(f"Database initialized: {db_path}")

    if crypto_manager is None:
        crypto_manager = CryptoManager(load_session_secret(config_manager))

    directory = IdentityDirectory(
        db_manager=db_manager,
        crypto_manager=crypto_manager,
        default_avatar=identity_config.default_avatar,
        min_credential_length=security_config.min_credential_length,
        reserved_handles=(content_config.anonymous_handle,),
    )

    gate = SessionGate(
        db_manager=db_manager,
        crypto_manager=crypto_manager,
        directory=directory,
        session_ttl=timedelta(hours=security_config.session_ttl_hours),
        allow_anonymous=content_config.allow_anonymous,
        anonymous_handle=content_config.anonymous_handle,
    )

    store = ContentStore(
        db_manager=db_manager,
        max_content_length=content_config.max_content_length,
        max_board_name_length=content_config.max_board_name_length,
    )

    return ForumAPI(
        directory=directory,
        gate=gate,
        store=store,
        engine=ThreadEngine(
            max_depth=content_config.max_thread_depth,
            cache_size=content_config.thread_cache_size,
        ),
        resolver=MentionResolver(directory, identity_config.profile_url_template),
        media_validator=MediaValidator(max_size=storage_config.max_attachment_size),
    )


class TokenStore:
    """Keeps the session token of the command line between invocations."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding='ascii').strip() or None
        except FileNotFoundError:
            return None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token, encoding='ascii')
        self.path.chmod(0o600)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def render_text(annotated: AnnotatedText) -> str:
    """Render annotated text for a terminal, with links after mentions."""
    parts = []
    for segment in annotated.segments:
        if isinstance(segment, MentionSegment):
            parts.append(f"{segment.text} <{segment.profile_ref}>")
        else:
            parts.append(segment.text)
    return "".join(parts)


def _format_media(record) -> str:
    media = record.media
    if media is None:
        return ""
    ref = media.payload_ref
    if ref.startswith("data:"):
        ref = "embedded data"
    return f"\n    [{media.mime_kind}: {media.mime_type}, {ref}]"


def _resolve_unit(forum: ForumAPI, args) -> ContentUnit:
    if args.post:
        return ContentUnit.post(args.post)
    board = _require_board(forum, args.board)
    return ContentUnit.board(board.id)


def _require_board(forum: ForumAPI, name: str):
    board = forum.get_board_by_name(name)
    if board is None:
        raise LookupError(f"Board '{name}' does not exist")
    return board


def _read_password(args, prompt: str = 'Password: ') -> str:
    return args.password if args.password is not None else getpass.getpass(prompt)


def run_command(args, forum: ForumAPI, tokens: TokenStore) -> int:
    """
    Execute one parsed command.

    Returns:
        Process exit code
    """
    token = tokens.load()
    command = args.command

    if command == 'register':
        handle = args.handle or forum.directory.generate_handle()
        if args.generate:
            password = forum.directory.generate_credential()
        else:
            password = _read_password(args)
        identity, new_token = forum.register(handle, password)
        tokens.save(new_token)
        print(f"Registered and logged in as {identity.handle}")
        if args.generate:
            print(f"Password: {password}")

    elif command == 'login':
        tokens.save(forum.login(args.handle, _read_password(args)))
        print(f"Logged in as {forum.status(tokens.load()).handle}")

    elif command == 'logout':
        forum.logout(token)
        tokens.clear()
        print("Logged out")

    elif command == 'whoami':
        status = forum.status(token)
        if status.is_logged_in:
            print(f"{status.handle}\n  avatar: {status.avatar_ref}\n  bio: {status.bio}")
        else:
            print("Not logged in")

    elif command == 'boards':
        for board in forum.list_boards():
            print(f"{board.name}  by {board.creator_handle}  {board.created_at:%Y-%m-%d %H:%M}")
            if board.description:
                print(f"    {board.description}")

    elif command == 'users':
        for identity in forum.list_identities():
            print(f"{identity.handle}  since {identity.created_at:%Y-%m-%d}")

    elif command == 'purge-sessions':
        print(f"Removed {forum.gate.purge_expired()} expired sessions")

    elif command == 'create-board':
        board = forum.create_board(token, args.name, args.description)
        print(f"Created board {board.name} ({board.id})")

    elif command == 'posts':
        board = _require_board(forum, args.board)
        for post in forum.list_posts_for_board(board.id):
            text = render_text(forum.resolve_mentions(post.content))
            print(f"{post.id}  {post.author_handle}  {post.created_at:%Y-%m-%d %H:%M}")
            print(f"    {text}{_format_media(post)}")

    elif command == 'post':
        board = _require_board(forum, args.board)
        post = forum.create_post(token, board.id, args.content, args.media, args.media_type)
        print(f"Created post {post.id}")

    elif command == 'comment':
        unit = _resolve_unit(forum, args)
        comment = forum.create_comment(
            token, unit, args.content, args.reply_to, args.media, args.media_type
        )
        print(f"Created comment {comment.id}")

    elif command == 'thread':
        unit = _resolve_unit(forum, args)
        for entry in forum.list_comments_for_unit(unit):
            indent = "  " * entry.depth
            comment = entry.comment
            text = render_text(forum.resolve_mentions(comment.content))
            print(f"{indent}{comment.author_handle} ({comment.id[:8]}): {text}"
                  f"{_format_media(comment)}")

    elif command == 'profile':
        if args.avatar is not None or args.bio is not None:
            forum.update_profile(token, args.avatar, args.bio)
        handle = args.handle or forum.status(token).handle
        if not handle:
            print("Not logged in; name a handle to show")
            return 1
        profile = forum.get_profile(handle)
        if profile is None:
            print(f"No such user: {handle}")
            return 1
        print(f"{profile.handle}  since {profile.created_at:%Y-%m-%d}")
        print(f"  avatar: {profile.avatar_ref}")
        print(f"  bio: {profile.bio}")
        print(f"  boards: {profile.stats.board_count}  posts: {profile.stats.post_count}"
              f"  comments: {profile.stats.comment_count}")

    elif command == 'import-legacy':
        importer = LegacyImporter(
            db_manager=forum.store.db,
            directory=forum.directory,
            media_validator=forum.media,
        )
        report = importer.import_snapshot(LegacyImporter.load_snapshot(args.snapshot))
        print(report.summary())

    return 0


def _print_notification(title: str, content: str, severity: ErrorSeverity) -> None:
    print(f"{title}: {content}", file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main application entry point.

    Initializes all components and runs one command.
    """
    # Parse command-line arguments
    args = parse_arguments(argv)

    # Initialize configuration manager
    config_path = Path(args.config) if args.config else None
    config_manager = ConfigManager(config_path)

    # Setup logging
    logging_config = config_manager.get_logging_config()
    if args.log_level:
        logging_config.level = args.log_level
    setup_logging(
        logging_config.level,
        config_manager.expand_path(logging_config.log_path),
        logging_config.max_log_size,
        logging_config.backup_count,
    )

    logger = logging.getLogger(__name__)

    error_handler = get_error_handler()
    error_handler.set_notification_callback(_print_notification)

    try:
        forum = build_forum(config_manager)
        tokens = TokenStore(
            config_manager.expand_path(config_manager.get_security_config().token_path)
        )
        return run_command(args, forum, tokens)
    except (BBSError, CryptoError, LegacyImportError, LookupError, ValueError) as e:
        error_handler.handle_error(e, args.command)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
