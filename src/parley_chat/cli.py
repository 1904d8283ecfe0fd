import os
import sys
import asyncio
import logging

import click

from parley_chat.config import ChatConfig
from parley_chat.core.context import ChatContext
from parley_chat.core.models import Role
from parley_chat.utils.logger import setup_logger


def _load_config() -> ChatConfig:
    try:
        return ChatConfig.from_env()
    except ValueError as exc:
        click.echo(f"Invalid configuration: {exc}", err=True)
        sys.exit(2)


def _run(handler):
    """Run ``handler(context)`` inside a started :class:`ChatContext`."""
    config = _load_config()

    async def _main():
        async with ChatContext(config) as context:
            return await handler(context)

    return asyncio.run(_main())


def _speaker(role: str) -> str:
    return "You" if role == Role.USER.value else "AI"


@click.group()
@click.option("--log-level", "-l", default=None, help="Set the logging level.")
def cli(log_level):
    """
    Parley Chat CLI.
    """
    level_name = (log_level or os.getenv("LOG_LEVEL") or "WARNING").upper()
    logger = setup_logger()
    level = getattr(logging, level_name, logging.WARNING)
    logger.setLevel(level)
    logger.info(f"Logger initialised at {level_name}")


@cli.command(name="chat")
def chat():
    """
    Launch the interactive Textual chat UI.
    """
    from parley_chat.ui import run_app

    asyncio.run(run_app(_load_config()))


@cli.command(name="send")
@click.option("--message", "-m", required=True, help="Message to send")
def send(message):
    """
    Send a single message to the active conversation and print the reply.
    """
    async def _send(context):
        session = context.new_session(live_sync=False)
        await session.bootstrap()
        if not session.can_send:
            return None, session.status or "Sending is disabled (sign in first?)"
        result = await session.send_message(message)
        return result, session.status

    result, status = _run(_send)
    if result is None or result.skipped:
        click.echo(f"Message not sent: {status}", err=True)
        sys.exit(1)
    if result.user_message is not None:
        click.echo(f"You: {result.user_message.message}")
    if result.error is not None:
        click.echo(f"Error: {result.error}", err=True)
        sys.exit(1)
    click.echo(f"AI: {result.reply.message}")


@cli.command(name="history")
def history():
    """
    Print the messages of the active conversation.
    """
    async def _history(context):
        conversation_id = context.storage.get_item(context.config.conversation_key)
        if not conversation_id:
            return None, []
        return conversation_id, await context.store.load_messages(conversation_id)

    conversation_id, messages = _run(_history)
    if conversation_id is None:
        click.echo("No active conversation yet. Send a message to start one.")
        return
    click.echo(f"Conversation {conversation_id}")
    if not messages:
        click.echo("(no messages)")
    for m in messages:
        stamp = m.created_at.strftime("%Y-%m-%d %H:%M:%S") if m.created_at else "-"
        click.echo(f"[{stamp}] {_speaker(m.role)}: {m.message}")


@cli.command(name="conversations")
@click.option("--all", "show_all", is_flag=True, help="Include conversations of every user")
def conversations(show_all):
    """
    List stored conversations.
    """
    async def _list(context):
        identity = await context.identity_provider.get_current_user()
        user_id = None if show_all else (identity.id if identity else context.config.guest_user_id)
        active = context.storage.get_item(context.config.conversation_key)
        return active, await context.store.list_conversations(user_id)

    active, rows = _run(_list)
    if not rows:
        click.echo("No conversations found.")
        return
    for row in rows:
        marker = "*" if row["id"] == active else " "
        created = row["created_at"].strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"{marker} {row['id']}  {created}  {row['message_count']} messages  ({row['user_id']})")


@cli.command(name="reset")
def reset():
    """
    Forget the cached conversation; the next session starts a new one.
    """
    async def _reset(context):
        return context.storage.remove_item(context.config.conversation_key)

    if _run(_reset):
        click.echo("Cached conversation forgotten.")
    else:
        click.echo("No cached conversation.")


@cli.command(name="login")
@click.option("--token", "-t", default=None, help="Access token delivered to the OAuth redirect")
def login(token):
    """
    Start the OAuth sign-in, or finish it with --token.
    """
    async def _login(context):
        provider = context.identity_provider
        if token:
            return await provider.complete_sign_in(token), None
        return None, await provider.sign_in()

    identity, url = _run(_login)
    if token:
        if identity is None:
            click.echo("Sign-in failed: the token was rejected.", err=True)
            sys.exit(1)
        click.echo(f"Signed in as {identity.display_name}")
        return
    if url is None:
        click.echo("No identity provider configured (set PARLEY_AUTH_MODE=authenticated and PARLEY_AUTH_URL).", err=True)
        sys.exit(1)
    click.echo(f"Complete sign-in in your browser: {url}")
    click.echo("Then run: parley login --token <access token>")


@cli.command(name="logout")
def logout():
    """
    Sign out of the identity provider.
    """
    async def _logout(context):
        await context.identity_provider.sign_out()

    _run(_logout)
    click.echo("Signed out.")


@cli.command(name="whoami")
def whoami():
    """
    Show the signed-in identity.
    """
    async def _whoami(context):
        return await context.identity_provider.get_current_user()

    identity = _run(_whoami)
    if identity is None:
        click.echo("guest")
    else:
        click.echo(f"{identity.display_name} ({identity.id})")


@cli.group()
def db():
    """
    Database maintenance commands.
    """
    pass


@db.command("init")
def db_init():
    """
    Create any missing tables.
    """
    async def _init(context):
        await context.database.ensure_schema()
        return context.database.url

    url = _run(_init)
    click.echo(f"Schema ready at {url}")


@cli.command(name="usage")
@click.option("--reset", "reset_totals", is_flag=True, help="Reset recorded usage")
def usage(reset_totals):
    """
    Show responder token usage and estimated cost.
    """
    from parley_chat.utils.usage_tracker import load_usage, reset_usage

    if reset_totals:
        reset_usage()
        click.echo("Usage data reset.")
        return

    data = load_usage()
    if not data:
        click.echo("No usage recorded yet.")
        return
    total_cost = 0.0
    for model, rec in sorted(data.items()):
        total_cost += rec.get("cost_usd", 0.0)
        click.echo(
            f"{model}: {rec.get('requests', 0)} requests, "
            f"{rec.get('prompt_tokens', 0)} prompt / {rec.get('completion_tokens', 0)} completion tokens, "
            f"${rec.get('cost_usd', 0.0):.4f}"
        )
    click.echo(f"Total: ${total_cost:.4f}")


if __name__ == "__main__":
    cli()
