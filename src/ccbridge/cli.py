from __future__ import annotations

import argparse
import json
import os
from typing import Any, List

from . import __version__
from .contracts.v1 import ApprovalOption
from .kernel.approvals import ApprovalManager
from .kernel.errors import BridgeError, DeadlineExceeded, NotFoundError
from .kernel.questions import QuestionAnswerChannel
from .kernel.sessions import SessionRegistry, normalize_session_id
from .kernel.settings import load_settings
from .kernel.store import CONFIG_BOT_TOKEN, CONFIG_CHAT_ID, CONFIG_PAUSED, Store
from .paths import bridge_home, listener_pid_path
from .ports.hook.client import ask_question, request_approval
from .ports.hook.main import HOOKS, run_hook
from .ports.im.transport import load_credentials, make_transport
from .util.fs import pid_alive, read_pid_file


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _error(code: str, message: str) -> dict:
    return {"ok": False, "error": {"code": code, "message": message}}


def cmd_config(args: argparse.Namespace) -> int:
    with Store() as store:
        if args.bot_token and args.chat_id:
            store.set_config(CONFIG_BOT_TOKEN, args.bot_token.strip())
            store.set_config(CONFIG_CHAT_ID, args.chat_id.strip())
            _print_json({"ok": True, "result": {"saved": True}})
            return 0
        if args.bot_token or args.chat_id:
            _print_json(_error("usage", "usage: ccbridge config <bot_token> <chat_id>"))
            return 2
        token, chat_id = load_credentials(store, load_settings())
        _print_json({"ok": True, "result": {"bot_token": "configured" if token else "not set", "chat_id": chat_id or None}})
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    settings = load_settings()
    pid = read_pid_file(listener_pid_path())
    with Store() as store:
        token, chat_id = load_credentials(store, settings)
        registry = SessionRegistry(store)
        _print_json(
            {
                "ok": True,
                "result": {
                    "home": str(bridge_home()),
                    "bot_token": "configured" if token else "not set",
                    "chat_id": "configured" if chat_id else "not set",
                    "listener": {"running": bool(pid and pid_alive(pid)), "pid": pid or None},
                    "paused": store.get_config_bool(CONFIG_PAUSED),
                    "default_session": registry.get_default(),
                    "active_sessions": len(registry.list_active()),
                    "pending_approvals": len(ApprovalManager(store).list_pending()),
                    "pending_questions": len(QuestionAnswerChannel(store).list_pending()),
                },
            }
        )
    return 0


def cmd_listen(args: argparse.Namespace) -> int:
    from .ports.im.bridge import start_listener

    try:
        start_listener(announce=not args.quiet)
    except SystemExit as e:
        return int(e.code) if isinstance(e.code, int) else 1
    return 0


def cmd_sessions(args: argparse.Namespace) -> int:
    with Store() as store:
        registry = SessionRegistry(store)
        default = registry.get_default()
        sessions = [dict(s.model_dump(), default=(s.id == default)) for s in registry.list_active()]
    _print_json({"ok": True, "result": {"sessions": sessions}})
    return 0


def cmd_register(args: argparse.Namespace) -> int:
    pid = args.pid if args.pid is not None else os.getppid()
    with Store() as store:
        sid = SessionRegistry(store).register(args.description or os.path.basename(os.getcwd()), pid)
    _print_json({"ok": True, "result": {"session_id": sid}})
    return 0


def cmd_unregister(args: argparse.Namespace) -> int:
    sid = normalize_session_id(args.session)
    with Store() as store:
        removed = SessionRegistry(store).unregister(sid)
    if not removed:
        _print_json(_error("session_not_found", f"session not found: {sid}"))
        return 2
    _print_json({"ok": True, "result": {"session_id": sid, "removed": True}})
    return 0


def cmd_hook(args: argparse.Namespace) -> int:
    return run_hook(args.name, session=args.session or "", description=args.description or "")


def cmd_ask(args: argparse.Namespace) -> int:
    try:
        answer = ask_question(args.session, args.text, args.choice or None, args.timeout)
    except DeadlineExceeded as e:
        _print_json(_error("timeout", str(e)))
        return 3
    except NotFoundError as e:
        _print_json(_error("session_not_found", str(e)))
        return 2
    except BridgeError as e:
        _print_json(_error("bridge_error", str(e)))
        return 2
    _print_json({"ok": True, "result": {"answer": answer}})
    return 0


def _parse_options(raw: List[str]) -> List[ApprovalOption]:
    out: List[ApprovalOption] = []
    for item in raw:
        label, sep, value = item.partition("=")
        if not sep:
            value = label.strip().lower()
        out.append(ApprovalOption(label=label.strip(), value=value.strip()))
    return out


def cmd_approve(args: argparse.Namespace) -> int:
    try:
        options = _parse_options(args.option) if args.option else None
        result = request_approval(args.title, args.message, options, args.timeout, args.category)
    except ValueError as e:
        _print_json(_error("invalid_options", str(e)))
        return 2
    _print_json({"ok": result.error is None, "result": result.model_dump()})
    if result.error:
        return 2
    return 0 if result.approved else 3


def cmd_send(args: argparse.Namespace) -> int:
    text = args.text
    if args.session:
        text = f"`[{normalize_session_id(args.session)}]` {text}"
    with Store() as store:
        transport = make_transport(store, load_settings())
        if transport is None:
            _print_json(_error("not_configured", "run: ccbridge config <bot_token> <chat_id>"))
            return 2
        ref = transport.send_message(text)
    if ref is None:
        _print_json(_error("send_failed", "message was not delivered"))
        return 2
    _print_json({"ok": True, "result": {"message_id": ref}})
    return 0


def cmd_cleanup(args: argparse.Namespace) -> int:
    settings = load_settings()
    with Store() as store:
        registry = SessionRegistry(store)
        dead = registry.cleanup_dead()
        stale = registry.cleanup_stale(settings.stale_after)
        pruned = ApprovalManager(store).prune(settings.listener.approval_retention)
    _print_json({"ok": True, "result": {"dead": dead, "stale": stale, "approvals_pruned": pruned}})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ccbridge", description="Chat bridge for long-running agent sessions")
    parser.add_argument("--version", action="version", version=f"ccbridge {__version__}")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_config = sub.add_parser("config", help="Save bot credentials (no arguments: show them)")
    p_config.add_argument("bot_token", nargs="?", default="")
    p_config.add_argument("chat_id", nargs="?", default="")
    p_config.set_defaults(func=cmd_config)

    p_status = sub.add_parser("status", help="Show configuration, listener and session status")
    p_status.set_defaults(func=cmd_status)

    p_listen = sub.add_parser("listen", help="Run the chat listener (one per bridge home)")
    p_listen.add_argument("--quiet", action="store_true", help="Do not announce startup in the chat")
    p_listen.set_defaults(func=cmd_listen)

    p_sessions = sub.add_parser("sessions", help="List active sessions")
    p_sessions.set_defaults(func=cmd_sessions)

    p_register = sub.add_parser("register", help="Register a session")
    p_register.add_argument("--description", default="", help="Shown in /status (default: current directory name)")
    p_register.add_argument("--pid", type=int, default=None, help="Owning process id (default: parent pid)")
    p_register.set_defaults(func=cmd_register)

    p_unregister = sub.add_parser("unregister", help="Remove a session")
    p_unregister.add_argument("session", help="Session code")
    p_unregister.set_defaults(func=cmd_unregister)

    p_hook = sub.add_parser("hook", help="Run an agent-runtime hook (JSON on stdin)")
    p_hook.add_argument("name", choices=sorted(HOOKS))
    p_hook.add_argument("--session", default="", help="Explicit session code")
    p_hook.add_argument("--description", default="", help="Session description (session-start)")
    p_hook.set_defaults(func=cmd_hook)

    p_ask = sub.add_parser("ask", help="Ask the operator a question and wait for the answer")
    p_ask.add_argument("session", help="Session code")
    p_ask.add_argument("text", help="Question text")
    p_ask.add_argument("--choice", action="append", default=[], help="Answer button (repeatable)")
    p_ask.add_argument("--timeout", type=float, default=None, help="Seconds to wait (default: settings)")
    p_ask.set_defaults(func=cmd_ask)

    p_approve = sub.add_parser("approve", help="Request an approval and wait for the decision")
    p_approve.add_argument("title")
    p_approve.add_argument("message")
    p_approve.add_argument(
        "--option", action="append", default=[], help="LABEL=VALUE (repeatable, 2-4; first one means approved)"
    )
    p_approve.add_argument("--timeout", type=float, default=None, help="Seconds to wait (default: settings)")
    p_approve.add_argument("--category", default="general")
    p_approve.set_defaults(func=cmd_approve)

    p_send = sub.add_parser("send", help="Post a message to the operator chat")
    p_send.add_argument("text")
    p_send.add_argument("--session", default="", help="Tag the message with a session code")
    p_send.set_defaults(func=cmd_send)

    p_cleanup = sub.add_parser("cleanup", help="Remove dead/stale sessions and prune old approvals")
    p_cleanup.set_defaults(func=cmd_cleanup)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
