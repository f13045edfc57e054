from __future__ import annotations

import argparse
import logging
import sys

from dotenv import load_dotenv

from genesis import APP_NAME, __version__
from genesis.config import GenesisConfig
from genesis.errors import ConfigError, GenerationError
from genesis.export import export_json
from genesis.llm.client import GenerationClient
from genesis.markdown import render
from genesis.service import ChatService, describe_error
from genesis.sessions.store import SessionStore
from genesis.settings import SettingsStore
from genesis.storage import JsonFileStore

REPL_HELP = """Commands:
  /new [title]       start a new session
  /list              list sessions
  /switch <id>       make another session active
  /rename <title>    rename the active session
  /delete [id]       delete a session (default: active)
  /clear             delete every session
  /export [dir]      export the active session as JSON
  /help              show this help
  /quit              leave"""


def main() -> int:
    load_dotenv()
    return _main(sys.argv[1:])


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="genesis", description=f"{APP_NAME} - local chat")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--data-dir", default=None, help="Where sessions and settings are stored")
    parser.add_argument("--model", default=None, help="Gemini model name")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=False)

    chat = subparsers.add_parser("chat", help="Interactive chat (default)")
    chat.add_argument("--session", default=None, help="Session id to open")
    chat.add_argument("--message", "-m", help="Send a single message and exit")

    sessions = subparsers.add_parser("sessions", help="Manage sessions")
    sessions_sub = sessions.add_subparsers(dest="sessions_command", required=True)
    sessions_sub.add_parser("list", help="List sessions")
    new = sessions_sub.add_parser("new", help="Create and activate a session")
    new.add_argument("title", nargs="?", default=None)
    rename = sessions_sub.add_parser("rename", help="Rename a session")
    rename.add_argument("session_id")
    rename.add_argument("title")
    delete = sessions_sub.add_parser("delete", help="Delete a session")
    delete.add_argument("session_id")
    sessions_sub.add_parser("clear", help="Delete all sessions")

    export = subparsers.add_parser("export", help="Export a session as JSON")
    export.add_argument("session_id", nargs="?", default=None, help="Defaults to the active session")
    export.add_argument("--out-dir", default=".", help="Directory to write the export into")
    export.add_argument("--stdout", action="store_true", help="Print instead of writing a file")

    settings = subparsers.add_parser("settings", help="Show or change settings")
    settings_sub = settings.add_subparsers(dest="settings_command", required=True)
    settings_sub.add_parser("show", help="Show current settings")
    set_cmd = settings_sub.add_parser("set", help="Update settings")
    set_cmd.add_argument("--api-key", default=None)
    set_cmd.add_argument("--temperature", type=float, default=None)
    set_cmd.add_argument("--max-tokens", type=int, default=None)

    test_key = subparsers.add_parser("test-key", help="Check that an API key works")
    test_key.add_argument("--api-key", default=None, help="Defaults to the stored key")

    subparsers.add_parser("render", help="Render markdown from stdin as HTML")

    gui = subparsers.add_parser("gui", help="Launch the Gradio web UI")
    gui.add_argument("--port", type=int, default=None)
    gui.add_argument("--share", action="store_true")

    return parser


def _build_service(args) -> ChatService:
    config = GenesisConfig.from_env()
    if args.data_dir:
        config.data_dir = str(args.data_dir)
    if args.model:
        config.model = str(args.model)
    config.validate()

    kv = JsonFileStore(config.data_dir)
    return ChatService(
        sessions=SessionStore(kv),
        settings=SettingsStore(kv, fallback_api_key=config.fallback_api_key),
        client=GenerationClient(
            model=config.model, api_base=config.api_base, timeout=config.timeout
        ),
        memory_window=config.memory_window,
    )


def _main(argv: list[str]) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if args.command == "render":
        return _cmd_render(args)

    try:
        service = _build_service(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    command = args.command or "chat"
    handlers = {
        "chat": _cmd_chat,
        "sessions": _cmd_sessions,
        "export": _cmd_export,
        "settings": _cmd_settings,
        "test-key": _cmd_test_key,
        "gui": _cmd_gui,
    }
    try:
        return handlers[command](service, args)
    finally:
        service.client.close()


def _cmd_render(args) -> int:
    sys.stdout.write(render(sys.stdin.read()))
    sys.stdout.write("\n")
    return 0


def _format_session_line(session, active_id: str | None) -> str:
    marker = "*" if session.id == active_id else " "
    updated = session.updated_at.strftime("%Y-%m-%d %H:%M")
    return f"{marker} {session.id}  {updated}  {len(session.messages):>3} msgs  {session.title}"


def _print_sessions(service: ChatService) -> None:
    active_id = service.sessions.get_active_id()
    for session in service.sessions.load_all():
        print(_format_session_line(session, active_id))


def _print_transcript(session) -> None:
    for message in session.messages:
        who = "You" if message.role.value == "user" else APP_NAME
        print(f"{who}: {message.text}\n")


def _send_and_print(service: ChatService, text: str, session_id: str) -> bool:
    outcome = service.send(text, session_id=session_id)
    if not outcome.ok:
        print(f"Error: {describe_error(outcome.error)}", file=sys.stderr)
        return False
    print(f"{APP_NAME}: {outcome.reply.text}")
    if outcome.elapsed_ms is not None:
        print(f"  ({outcome.elapsed_ms} ms)")
    return True


def _cmd_chat(service: ChatService, args) -> int:
    session = service.start()
    requested = getattr(args, "session", None)
    message = getattr(args, "message", None)
    if requested:
        switched = service.switch(requested)
        if switched is None:
            print(f"Error: Session {requested} not found", file=sys.stderr)
            return 1
        session = switched

    if message:
        return 0 if _send_and_print(service, message, session.id) else 1

    print(f"{APP_NAME} - session {session.id} ({session.title}). Type /help for commands.")
    _print_transcript(session)
    while True:
        try:
            line = input("> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            return 0
        if not line:
            continue
        if line.startswith("/"):
            command, _, rest = line[1:].partition(" ")
            rest = rest.strip()
            if command in ("quit", "exit"):
                return 0
            session = _repl_command(service, session, command, rest)
            continue
        _send_and_print(service, line, session.id)


def _repl_command(service: ChatService, session, command: str, rest: str):
    if command == "help":
        print(REPL_HELP)
    elif command == "new":
        session = service.new_session(rest or None)
        print(f"Started session {session.id}")
    elif command == "list":
        _print_sessions(service)
    elif command == "switch":
        switched = service.switch(rest)
        if switched is None:
            print(f"No session {rest!r}")
        else:
            session = switched
            _print_transcript(session)
    elif command == "rename":
        renamed = service.rename(session.id, rest)
        if renamed is not None:
            session = renamed
            print(f"Renamed to {session.title!r}")
    elif command == "delete":
        session = service.delete(rest or session.id)
        print(f"Active session: {session.id} ({session.title})")
    elif command == "clear":
        session = service.clear_all()
        print(f"All sessions deleted. Active session: {session.id}")
    elif command == "export":
        path = service.export_to(session.id, rest or ".")
        if path is None:
            print(f"Error: Session {session.id} not found", file=sys.stderr)
        else:
            print(f"Exported to {path}")
    else:
        print(f"Unknown command /{command}. Type /help.")
    return session


def _cmd_sessions(service: ChatService, args) -> int:
    sub = args.sessions_command
    if sub == "list":
        service.start()
        _print_sessions(service)
    elif sub == "new":
        session = service.new_session(args.title)
        print(session.id)
    elif sub == "rename":
        if service.rename(args.session_id, args.title) is None:
            print(f"Error: Session {args.session_id} not found", file=sys.stderr)
            return 1
    elif sub == "delete":
        if service.sessions.get_by_id(args.session_id) is None:
            print(f"Error: Session {args.session_id} not found", file=sys.stderr)
            return 1
        service.delete(args.session_id)
    elif sub == "clear":
        service.clear_all()
    return 0


def _cmd_export(service: ChatService, args) -> int:
    session_id = args.session_id or service.active_session().id
    if args.stdout:
        session = service.sessions.get_by_id(session_id)
        if session is None:
            print(f"Error: Session {session_id} not found", file=sys.stderr)
            return 1
        sys.stdout.write(export_json(session))
        return 0
    path = service.export_to(session_id, args.out_dir)
    if path is None:
        print(f"Error: Session {session_id} not found", file=sys.stderr)
        return 1
    print(path)
    return 0


def _cmd_settings(service: ChatService, args) -> int:
    if args.settings_command == "set":
        service.save_settings(
            api_key=args.api_key,
            temperature=args.temperature,
            max_tokens=args.max_tokens,
        )
    settings = service.settings.load()
    print(f"api_key:     {settings.masked_key()}")
    print(f"temperature: {settings.temperature:.2f}")
    print(f"max_tokens:  {settings.max_tokens}")
    return 0


def _cmd_test_key(service: ChatService, args) -> int:
    try:
        result = service.test_key(args.api_key)
    except GenerationError as e:
        print(f"Key check failed: {describe_error(e)}", file=sys.stderr)
        return 1
    print(f"Key OK ({result.elapsed_ms} ms)")
    return 0


def _cmd_gui(service: ChatService, args) -> int:
    from genesis.gui.app import launch

    kwargs = {"share": bool(args.share)}
    if args.port:
        kwargs["server_port"] = int(args.port)
    launch(service, **kwargs)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
