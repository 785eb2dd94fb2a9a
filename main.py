#!/usr/bin/env python3
"""
Gatehouse -- command-line administration of the security store.

Usage:
  python main.py hash PASSWORD
  python main.py init [--admin-login root --admin-password ... --admin-role admin]
  python main.py check LOGIN [--password PASSWORD]
  python main.py add-user LOGIN [--password PASSWORD] [--role NAME ...]
  python main.py add-role NAME
  python main.py grant LOGIN ROLE
  python main.py revoke LOGIN ROLE
  python main.py unlock LOGIN
  python main.py passwd LOGIN [--password PASSWORD]
  python main.py delete-user LOGIN
  python main.py delete-role NAME
  python main.py rename-role OLD NEW
  python main.py show LOGIN
  python main.py users [--role NAME]
  python main.py roles

Global options select the store and override the environment:
  --backend sql|xml   --database-url URL   --xml-path PATH

Environment variables (see core/config.py):
  STORAGE_BACKEND, DATABASE_URL, XML_PATH, LOG_LEVEL

Passwords omitted on the command line are read with getpass so they do not
end up in shell history. Exit status is 0 on success and 1 when the store
reports a SecurityError.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.errors import SecurityError
from auth.factory import create_adapter
from auth.hasher import encode_password
from auth.manager import SecurityManager
from auth.models import User
from core.config import Settings, get_settings

logger = logging.getLogger("gatehouse.cli")


def _password(args: argparse.Namespace, prompt: str = "Password: ") -> str:
    if args.password is not None:
        return args.password
    return getpass.getpass(prompt)


def _print_user(user: User) -> None:
    roles = ", ".join(sorted(r.name for r in user.roles)) or "-"
    last = user.last_connection.isoformat() if user.last_connection else "never"
    print(f"  id:                 {user.id}")
    print(f"  login:              {user.login}")
    print(f"  name:               {user.full_name.strip() or '-'}")
    print(f"  email:              {user.email or '-'}")
    print(f"  roles:              {roles}")
    print(f"  connections:        {user.connection_count} (last: {last})")
    print(f"  consecutive errors: {user.consecutive_errors}")
    print(f"  disabled:           {'yes' if user.disabled else 'no'}")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_hash(args: argparse.Namespace) -> None:
    print(encode_password(_password(args)))


def _cmd_init(manager: SecurityManager, args: argparse.Namespace, settings: Settings) -> None:
    """Create the store if missing and seed the first administrator."""
    password = args.admin_password if args.admin_password is not None else settings.bootstrap_admin_password
    if not password:
        print(f"  Store ready ({settings.storage_backend}). No administrator password given, nothing seeded.")
        return
    created = manager.bootstrap(
        args.admin_login or settings.bootstrap_admin_login,
        password,
        args.admin_role or settings.bootstrap_admin_role,
    )
    if created is None:
        print("  Store already has users. Nothing seeded.")
    else:
        print(f"  Created administrator '{created.login}' (id {created.id}).")


def _cmd_check(manager: SecurityManager, args: argparse.Namespace) -> None:
    user = manager.check_credentials(args.login, _password(args))
    print(f"  Credentials accepted for '{user.login}'.")
    _print_user(user)


def _cmd_add_user(manager: SecurityManager, args: argparse.Namespace) -> None:
    roles = {manager.get_role_by_name(name) for name in args.role}
    user = manager.insert_user(args.login, _password(args))
    user.first_name = args.first_name
    user.last_name = args.last_name
    user.email = args.email
    user.roles = roles
    manager.update_user(user)
    print(f"  Added user '{user.login}' (id {user.id}).")


def _cmd_add_role(manager: SecurityManager, args: argparse.Namespace) -> None:
    role = manager.insert_role(args.name)
    print(f"  Added role '{role.name}' (id {role.id}).")


def _cmd_grant(manager: SecurityManager, args: argparse.Namespace) -> None:
    user = manager.get_user_by_login(args.login)
    user.add_role(manager.get_role_by_name(args.role))
    manager.update_user(user)
    print(f"  '{user.login}' is now a member of '{args.role}'.")


def _cmd_revoke(manager: SecurityManager, args: argparse.Namespace) -> None:
    user = manager.get_user_by_login(args.login)
    user.remove_role(manager.get_role_by_name(args.role))
    manager.update_user(user)
    print(f"  '{user.login}' is no longer a member of '{args.role}'.")


def _cmd_unlock(manager: SecurityManager, args: argparse.Namespace) -> None:
    user = manager.get_user_by_login(args.login)
    manager.unlock_user(user)
    print(f"  Unlocked '{user.login}'.")


def _cmd_passwd(manager: SecurityManager, args: argparse.Namespace) -> None:
    user = manager.get_user_by_login(args.login)
    manager.set_password(user, _password(args, "New password: "))
    manager.update_user(user)
    print(f"  Password changed for '{user.login}'.")


def _cmd_delete_user(manager: SecurityManager, args: argparse.Namespace) -> None:
    manager.delete_user(manager.get_user_by_login(args.login))
    print(f"  Deleted user '{args.login}'.")


def _cmd_delete_role(manager: SecurityManager, args: argparse.Namespace) -> None:
    manager.delete_role(manager.get_role_by_name(args.name))
    print(f"  Deleted role '{args.name}'.")


def _cmd_rename_role(manager: SecurityManager, args: argparse.Namespace) -> None:
    role = manager.get_role_by_name(args.old)
    role.name = args.new
    manager.update_role(role)
    print(f"  Renamed role '{args.old}' to '{args.new}'.")


def _cmd_show(manager: SecurityManager, args: argparse.Namespace) -> None:
    _print_user(manager.get_user_by_login(args.login))


def _cmd_users(manager: SecurityManager, args: argparse.Namespace) -> None:
    if args.role:
        users = manager.get_users_by_role(manager.get_role_by_name(args.role))
    else:
        users = manager.list_users()
    for user in sorted(users, key=lambda u: u.login):
        flag = "  [disabled]" if user.disabled else ""
        print(f"  {user.id:>5}  {user.login}{flag}")
    print(f"\n  {len(users)} user(s).")


def _cmd_roles(manager: SecurityManager, args: argparse.Namespace) -> None:
    roles = manager.list_roles()
    for role in sorted(roles, key=lambda r: r.name):
        print(f"  {role.id:>5}  {role.name}")
    print(f"\n  {len(roles)} role(s).")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Administer the Gatehouse user and role store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init --admin-password 's3cret'
  python main.py add-role auditors
  python main.py add-user alice --role auditors --email alice@example.com
  python main.py check alice
  python main.py --backend xml --xml-path security.xml users
        """,
    )
    parser.add_argument("--backend", choices=["sql", "xml"], default=None, help="Storage backend (default: STORAGE_BACKEND)")
    parser.add_argument("--database-url", metavar="URL", default=None, help="SQLAlchemy URL for the sql backend")
    parser.add_argument("--xml-path", metavar="PATH", default=None, help="Document path for the xml backend")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    def command(name: str, handler, help_text: str, needs_store: bool = True) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.set_defaults(handler=handler, needs_store=needs_store)
        return p

    p = command("hash", _cmd_hash, "Print the hash token for a password", needs_store=False)
    p.add_argument("password", nargs="?", default=None)

    p = command("init", _cmd_init, "Create the store and seed the first administrator")
    p.add_argument("--admin-login", default=None)
    p.add_argument("--admin-password", default=None)
    p.add_argument("--admin-role", default=None)

    p = command("check", _cmd_check, "Verify a login/password pair (counts toward lockout)")
    p.add_argument("login")
    p.add_argument("--password", default=None)

    p = command("add-user", _cmd_add_user, "Create a user")
    p.add_argument("login")
    p.add_argument("--password", default=None)
    p.add_argument("--first-name", default="")
    p.add_argument("--last-name", default="")
    p.add_argument("--email", default="")
    p.add_argument("--role", action="append", default=[], metavar="NAME", help="Role to grant (repeatable)")

    p = command("add-role", _cmd_add_role, "Create a role")
    p.add_argument("name")

    p = command("grant", _cmd_grant, "Add a user to a role")
    p.add_argument("login")
    p.add_argument("role")

    p = command("revoke", _cmd_revoke, "Remove a user from a role")
    p.add_argument("login")
    p.add_argument("role")

    p = command("unlock", _cmd_unlock, "Re-enable a locked account and clear its error count")
    p.add_argument("login")

    p = command("passwd", _cmd_passwd, "Change a user's password")
    p.add_argument("login")
    p.add_argument("--password", default=None)

    p = command("delete-user", _cmd_delete_user, "Delete a user")
    p.add_argument("login")

    p = command("delete-role", _cmd_delete_role, "Delete a role (members keep their other roles)")
    p.add_argument("name")

    p = command("rename-role", _cmd_rename_role, "Rename a role")
    p.add_argument("old")
    p.add_argument("new")

    p = command("show", _cmd_show, "Show a user's profile")
    p.add_argument("login")

    p = command("users", _cmd_users, "List users")
    p.add_argument("--role", default=None, metavar="NAME", help="Only members of this role")

    command("roles", _cmd_roles, "List roles")
    return parser


def _settings_for(args: argparse.Namespace) -> Settings:
    overrides = {
        key: value
        for key, value in (
            ("storage_backend", args.backend),
            ("database_url", args.database_url),
            ("xml_path", args.xml_path),
        )
        if value is not None
    }
    settings = get_settings()
    return settings.model_copy(update=overrides) if overrides else settings


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    settings = _settings_for(args)
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        if not args.needs_store:
            args.handler(args)
            return 0
        with SecurityManager(create_adapter(settings)) as manager:
            if args.handler is _cmd_init:
                _cmd_init(manager, args, settings)
            else:
                args.handler(manager, args)
    except SecurityError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
