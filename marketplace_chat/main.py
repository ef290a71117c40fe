"""
Session entry points

chat_session() brackets a signed-in session: it starts the delivery queue and
push channel, reports the user online with a heartbeat, and on exit flushes
the offline status and releases every resource.

Running the module tails one conversation in the terminal:
    python -m marketplace_chat.main --user u_1 --role buyer --conversation c_42
"""
import argparse
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from marketplace_chat.core.config import Settings, get_settings
from marketplace_chat.core.context import ChatContext
from marketplace_chat.models.common import ActorRole
from marketplace_chat.services.chat_view import ChatView
from marketplace_chat.services.presence import PresenceTracker

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None):
    logging.basicConfig(
        level=getattr(logging, (level or get_settings().LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@asynccontextmanager
async def chat_session(
    user_id: str,
    role: ActorRole,
    settings: Optional[Settings] = None,
    context: Optional[ChatContext] = None,
) -> AsyncIterator[ChatContext]:
    """Startup and shutdown of one chat session"""
    ctx = context or ChatContext.from_settings(user_id, ActorRole(role), settings=settings)
    presence = PresenceTracker(ctx)

    logger.info(f"Starting chat session for {ctx.role.value} {ctx.user_id}...")
    await ctx.start()
    await presence.start()
    try:
        yield ctx
    finally:
        logger.info("Shutting down chat session...")
        # Offline status rides the delivery queue, which close() drains
        await presence.stop(beacon=True)
        await ctx.close()
        logger.info("Chat session shut down")


async def tail_conversation(user_id: str, role: ActorRole, conversation_id: str):
    """Print messages of one conversation as they arrive."""
    printed = set()

    def show_new():
        for message in view.messages:
            if message.id in printed:
                continue
            printed.add(message.id)
            stamp = message.created_at.strftime("%H:%M") if message.created_at else "--:--"
            print(f"[{stamp}] {message.sender_type.value}:{message.sender_id}: {message.content}")

    async with chat_session(user_id, role) as ctx:
        view = ChatView(ctx, on_error=lambda e: logger.error(f"{e}"), on_scroll_to_latest=show_new)
        await view.start()
        await view.select(conversation_id)
        try:
            await asyncio.Event().wait()
        finally:
            await view.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Tail a marketplace chat conversation")
    parser.add_argument("--user", required=True)
    parser.add_argument("--role", required=True, choices=[r.value for r in ActorRole])
    parser.add_argument("--conversation", required=True)
    args = parser.parse_args(argv)

    configure_logging()
    try:
        asyncio.run(tail_conversation(args.user, ActorRole(args.role), args.conversation))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
