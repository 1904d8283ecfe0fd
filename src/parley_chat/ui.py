"""
Textual UI client for Parley Chat.
"""
import logging
import re
from datetime import datetime
from typing import Optional

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Footer, Input, OptionList, RichLog, Static
from textual.widgets.option_list import Option

from parley_chat.config import ChatConfig
from parley_chat.core.context import ChatContext
from parley_chat.core.models import ChatMessage, Role
from parley_chat.core.session import ChatSession
from parley_chat.utils.logger import get_logger, setup_logger_with_env_control

logger = get_logger()


def markdown_to_rich(text: str) -> str:
    """Convert basic markdown syntax in a reply to Rich markup."""
    if not text:
        return text

    text = escape(text)

    # Code blocks first so their contents are not treated as inline markup
    text = re.sub(r'```(?:\w+\n)?(.+?)```', r'[cyan]\1[/cyan]', text, flags=re.DOTALL)
    text = re.sub(r'`([^`]+?)`', r'[cyan]\1[/cyan]', text)

    text = re.sub(r'\*\*(.+?)\*\*', r'[bold]\1[/bold]', text)
    text = re.sub(r'__(.+?)__', r'[bold]\1[/bold]', text)

    text = re.sub(r'(?<![\*\w])\*([^*\n]+?)\*(?![\*\w])', r'[italic]\1[/italic]', text)
    text = re.sub(r'(?<![_\w])_([^_\n]+?)_(?![_\w])', r'[italic]\1[/italic]', text)

    text = re.sub(r'^#+\s*(.+)$', r'[bold]\1[/bold]', text, flags=re.MULTILINE)

    return text


def format_message(message: ChatMessage) -> str:
    """One log line for a message: ``You:`` or ``AI:`` and its text."""
    if message.role == Role.USER.value:
        return f"[bold green]You:[/bold green] {escape(message.message)}"
    return f"[bold cyan]AI:[/bold cyan] {markdown_to_rich(message.message)}"


class SignInModal(ModalScreen[Optional[str]]):
    """Shows the OAuth URL and collects the access token from the redirect."""

    CSS = """
    SignInModal {
        align: center middle;
    }

    #sign_in_dialog {
        width: 80;
        height: auto;
        border: thick $background 80%;
        background: $surface;
        padding: 1;
    }

    #sign_in_buttons {
        height: auto;
        margin-top: 1;
    }
    """

    def __init__(self, authorize_url: Optional[str]):
        super().__init__()
        self.authorize_url = authorize_url

    def compose(self) -> ComposeResult:
        with Vertical(id="sign_in_dialog"):
            yield Static("Sign in", classes="title")
            if self.authorize_url:
                yield Static(f"Finish signing in at:\n{escape(self.authorize_url)}")
            else:
                yield Static("No identity provider is configured.")
            yield Input(placeholder="Paste the access token from the redirect", id="token_input",
                        password=True)
            with Horizontal(id="sign_in_buttons"):
                yield Button("Sign in", variant="primary", id="confirm_btn")
                yield Button("Cancel", variant="default", id="cancel_btn")

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        self.dismiss(event.value.strip() or None)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "confirm_btn":
            token = self.query_one("#token_input", Input).value.strip()
            self.dismiss(token or None)
        else:
            self.dismiss(None)


class ConversationSelectorModal(ModalScreen[Optional[str]]):
    """Modal screen for switching to another stored conversation."""

    CSS = """
    ConversationSelectorModal {
        align: center middle;
    }

    #conversation_dialog {
        width: 70;
        height: 20;
        border: thick $background 80%;
        background: $surface;
    }

    #conversation_list {
        height: 1fr;
        border: solid $accent;
        margin: 1;
    }

    #conversation_buttons {
        height: auto;
        margin: 1;
    }
    """

    def __init__(self, session: ChatSession):
        super().__init__()
        self.session = session

    def compose(self) -> ComposeResult:
        with Vertical(id="conversation_dialog"):
            yield Static("Select a Conversation", classes="title")
            yield OptionList(id="conversation_list")
            with Horizontal(id="conversation_buttons"):
                yield Button("Select", variant="primary", id="select_btn")
                yield Button("Cancel", variant="default", id="cancel_btn")

    async def on_mount(self) -> None:
        conversation_list = self.query_one("#conversation_list", OptionList)
        conversations = await self.session.store.list_conversations(self.session.user_id)
        if not conversations:
            conversation_list.add_option(Option("No conversations found", disabled=True))
            return
        for conversation in conversations:
            created_str = conversation["created_at"].strftime("%Y-%m-%d %H:%M")
            marker = "* " if conversation["id"] == self.session.conversation_id else "  "
            label = f"{marker}{created_str} - {conversation['message_count']} messages"
            conversation_list.add_option(Option(label, id=conversation["id"]))

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "select_btn":
            conversation_list = self.query_one("#conversation_list", OptionList)
            if conversation_list.highlighted is not None:
                option = conversation_list.get_option_at_index(conversation_list.highlighted)
                self.dismiss(option.id if option and not option.disabled else None)
                return
        self.dismiss(None)

    async def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        if event.option.id is not None:
            self.dismiss(event.option.id)


class ChatApp(App):
    CSS = """
    Screen {
        layout: vertical;
    }
    #header { text-align: center; }
    #chat_log { height: 1fr; border: round $accent; padding: 0 1; }
    #status { height: 1; color: $warning; }
    #chat_input { height: auto; border: round $accent; }
    """
    BINDINGS = [
        Binding("ctrl+l", "sign_in", "Sign in"),
        Binding("ctrl+o", "sign_out", "Sign out"),
        Binding("ctrl+s", "switch_conversation", "Switch conversation"),
        Binding("ctrl+n", "new_conversation", "New conversation"),
        Binding("ctrl+r", "reload", "Reload history"),
    ]

    def __init__(self, context: ChatContext, **kwargs):
        super().__init__(**kwargs)
        self.context = context
        self.session: Optional[ChatSession] = None
        self._sending = False

    def compose(self) -> ComposeResult:
        yield Static("", id="header")
        yield RichLog(id="chat_log", wrap=True, markup=True, highlight=False)
        yield Static("", id="status")
        yield Input(placeholder="Type your message here...", id="chat_input", disabled=True)
        yield Footer()

    async def on_mount(self) -> None:
        self.chat_log = self.query_one("#chat_log", RichLog)
        self.chat_input = self.query_one("#chat_input", Input)
        self.status_line = self.query_one("#status", Static)
        self.header = self.query_one("#header", Static)
        self.set_interval(1, self._update_header)

        self.session = self.context.new_session()
        self.session.messages.add_listener(self._on_messages_changed)
        self.session.add_status_listener(self._on_status)

        logger.info("Starting chat session...")
        result = await self.session.start()
        if result.conversation_id:
            logger.info(f"Chat ready on conversation {result.conversation_id}")
        self._update_controls()
        self._update_header()

    async def on_unmount(self) -> None:
        if self.session is not None:
            await self.session.close()

    def _on_messages_changed(self, kind: str, message: Optional[ChatMessage]) -> None:
        if kind == "reset":
            self.chat_log.clear()
            for m in self.session.messages:
                self.chat_log.write(format_message(m))
        elif message is not None:
            self.chat_log.write(format_message(message))
        self._update_controls()

    def _on_status(self, status: str, level: int) -> None:
        if status and level >= logging.ERROR:
            self.status_line.update(f"[red]error:[/red] {escape(status)}")
        else:
            self.status_line.update(escape(status))
        self._update_controls()

    def _update_controls(self) -> None:
        can_send = self.session is not None and self.session.can_send and not self._sending
        was_disabled = self.chat_input.disabled
        self.chat_input.disabled = not can_send
        if can_send and was_disabled:
            self.chat_input.focus()

    def _update_header(self) -> None:
        now = datetime.now().strftime("%H:%M:%S")
        if self.session is None:
            self.header.update(f"Parley - starting - {now}")
            return
        who = self.session.identity.display_name if self.session.identity else "guest"
        conversation = self.session.conversation_id or "none"
        self.header.update(
            f"Parley - {escape(who)} - conversation {conversation[:8]} "
            f"- sync {self.session.sync_state.value} - {now}"
        )

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value
        if not text.strip():
            return
        self.run_worker(self._send(text), group="send")

    async def _send(self, text: str) -> None:
        self._sending = True
        self._update_controls()
        try:
            await self.session.send_message(text, on_persisted=lambda _: self._clear_input())
        finally:
            self._sending = False
            self._update_controls()

    def _clear_input(self) -> None:
        self.chat_input.value = ""

    async def action_sign_in(self) -> None:
        url = await self.context.identity_provider.sign_in()

        async def handle_token(token: Optional[str]) -> None:
            if not token:
                return
            identity = await self.context.identity_provider.complete_sign_in(token)
            if identity is None:
                self._on_status("Sign-in failed.", logging.ERROR)

        self.push_screen(SignInModal(url), handle_token)

    async def action_sign_out(self) -> None:
        await self.context.identity_provider.sign_out()

    def action_switch_conversation(self) -> None:
        async def handle_selection(conversation_id: Optional[str]) -> None:
            if conversation_id and conversation_id != self.session.conversation_id:
                await self.session.switch_conversation(conversation_id)
                logger.info(f"Switched to conversation {conversation_id}")

        self.push_screen(ConversationSelectorModal(self.session), handle_selection)

    async def action_new_conversation(self) -> None:
        await self.session.reset_conversation()

    async def action_reload(self) -> None:
        await self.session.bootstrap()


async def run_app(config: Optional[ChatConfig] = None):
    """Run the Textual chat application."""
    setup_logger_with_env_control()
    async with ChatContext(config or ChatConfig.from_env()) as context:
        app = ChatApp(context)
        await app.run_async()
