#!/usr/bin/env python3
"""
authsvc -- Session login, bearer-token verification and a minimal OAuth2
authorization-code server.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py crypt 'T0p53cr37' 'another-password'
  python main.py keys >> .env
  python main.py generate users --username alice --password secret --out-file users.json
  python main.py generate clients --out-file clients.json
  python main.py generate passwords --username alice --password secret --out-file passwords.json

Environment variables (see core/config.py for the full list):
  HASH_KEY, BLOCK_KEY   base64 session cookie keys. Required unless DEBUG=true.
  STORAGE_ENGINE        memory (default) or sql
  DATABASE_URL          SQLAlchemy URL for the sql engine
  CLIENTS_FILE, USERS_FILE, PASSWORDS_FILE   JSON seed files loaded at startup
"""

import argparse
import json
import os
import sys
from typing import IO, Optional

from auth.models import Client, User
from auth.store import ClientRegistry, UserRegistry
from auth.tokens import hash_password
from cache.store import MemoryCache, dataclass_codec
from core.config import BLOCK_KEY_SIZE, HASH_KEY_SIZE, generate_key

DEFAULT_USERNAME = "test.user@example.com"
DEFAULT_PASSWORD = "T0p53cr37"


def _open_new(path: str) -> IO[str]:
    """Open path for writing, refusing to overwrite. The file is created 0600."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    return os.fdopen(fd, "w", encoding="utf-8")


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_crypt(args: argparse.Namespace) -> int:
    if not args.passwords:
        print("  [!] Provide at least one password to crypt.", file=sys.stderr)
        return 2
    for password in args.passwords:
        print(f"{password!r} --> {hash_password(password)!r}")
    return 0


def cmd_keys(args: argparse.Namespace) -> int:
    print(f"HASH_KEY={generate_key(HASH_KEY_SIZE)}")
    print(f"BLOCK_KEY={generate_key(BLOCK_KEY_SIZE)}")
    return 0


def cmd_generate_users(args: argparse.Namespace) -> int:
    users = UserRegistry(MemoryCache(dataclass_codec(User)))
    users.put(
        User(
            id=99,
            username=args.username,
            password=hash_password(args.password),
            email="user@example.com",
            name="Example User",
        )
    )
    with _open_new(args.out_file) as f:
        users.save_to_json(f)
    print(f"Writing users file {args.out_file!r}, with username {args.username!r} and password {args.password!r}")
    return 0


def cmd_generate_clients(args: argparse.Namespace) -> int:
    clients = ClientRegistry(MemoryCache(dataclass_codec(Client)))
    clients.put(
        Client(
            id="example.com",
            name="Sample OAuth2 Client",
            endpoints=[
                "https://example.com/oauth/done",
                "https://example.com/signup/gitlab/complete",
            ],
        )
    )
    with _open_new(args.out_file) as f:
        clients.save_to_json(f)
    print(f"Writing clients file {args.out_file!r}")
    return 0


def cmd_generate_passwords(args: argparse.Namespace) -> int:
    with _open_new(args.out_file) as f:
        json.dump({args.username: hash_password(args.password)}, f, indent=2)
    print(f"Writing password file {args.out_file!r}, with username {args.username!r} and password {args.password!r}")
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authsvc",
        description="Authentication gateway: session login, bearer tokens, OAuth2 authorization codes.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=cmd_serve)

    crypt = sub.add_parser("crypt", help="Print bcrypt hashes of the given passwords")
    crypt.add_argument("passwords", nargs="*", metavar="PASSWORD")
    crypt.set_defaults(func=cmd_crypt)

    keys = sub.add_parser("keys", help="Print freshly generated HASH_KEY and BLOCK_KEY lines")
    keys.set_defaults(func=cmd_keys)

    generate = sub.add_parser("generate", aliases=["gen"], help="Write sample seed files")
    gen_sub = generate.add_subparsers(dest="kind", metavar="KIND")

    def _with_output(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument(
            "--out-file",
            default="out.json",
            metavar="PATH",
            help="File to write JSON-encoded generated content (must not exist)",
        )
        return p

    def _with_credentials(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument("--username", default=DEFAULT_USERNAME, help="Username to use")
        p.add_argument("--password", default=DEFAULT_PASSWORD, help="Password to use")
        return p

    users = _with_credentials(_with_output(gen_sub.add_parser("users", help="Sample users file")))
    users.set_defaults(func=cmd_generate_users)
    clients = _with_output(gen_sub.add_parser("clients", help="Sample OAuth clients file"))
    clients.set_defaults(func=cmd_generate_clients)
    passwords = _with_credentials(_with_output(gen_sub.add_parser("passwords", help="Sample static passwords file")))
    passwords.set_defaults(func=cmd_generate_passwords)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    func = getattr(args, "func", None)
    if func is None:
        parser.print_help()
        return 2
    try:
        return func(args)
    except FileExistsError as e:
        print(f"  [!] Refusing to overwrite '{e.filename}'.", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
