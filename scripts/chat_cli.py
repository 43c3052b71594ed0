#!/usr/bin/env python
"""Terminal client: chat with the travel planner from a shell.

Commands: /new, /sessions, /open N, /regen, /image PATH (attach to next prompt), /quit
"""
from __future__ import annotations

import argparse
import asyncio
import base64
import getpass
import mimetypes
import sys
from pathlib import Path

from tripchat.errors import AuthError, ConversationBusyError, ImageError
from tripchat.models import Message, Sender
from tripchat.services.backend import get_backend
from tripchat.services.chat import ChatService, ConversationManager
from tripchat.services.llm.registry import get_provider
from tripchat.utils.render import render_itinerary


class StreamPrinter:
    """Prints text deltas as they arrive and the itinerary card once resolved."""

    def __init__(self) -> None:
        self._printed: dict[str, int] = {}

    def __call__(self, event: str, message: Message | None) -> None:
        if message is None or message.sender is not Sender.AI:
            return
        if event == "remove":
            print("\n[reply discarded]")
            return
        seen = self._printed.get(message.id, 0)
        if len(message.text) < seen:  # regenerate reset the text
            seen = self._printed[message.id] = 0
            print()
        if len(message.text) > seen:
            sys.stdout.write(message.text[seen:])
            sys.stdout.flush()
            self._printed[message.id] = len(message.text)
        if not message.is_streaming:
            print()
            if message.itinerary is not None:
                print(render_itinerary(message.itinerary))


def _data_uri(path: str) -> str:
    mime = mimetypes.guess_type(path)[0] or "image/jpeg"
    data = base64.b64encode(Path(path).read_bytes()).decode("ascii")
    return f"data:{mime};base64,{data}"


async def _repl(service: ChatService) -> None:
    service.store.subscribe(StreamPrinter())
    pending_image: str | None = None
    loop = asyncio.get_running_loop()
    while True:
        line = (await loop.run_in_executor(None, input, "\nyou> ")).strip()
        if not line:
            continue
        try:
            if line == "/quit":
                break
            if line == "/new":
                service.new_chat()
                print("Started a new chat.")
            elif line == "/sessions":
                for i, s in enumerate(await service.load_sessions()):
                    print(f"{i:>3}  {s.created_at:%Y-%m-%d %H:%M}  {s.title}")
            elif line.startswith("/open "):
                session = service.sessions[int(line.split()[1])]
                for m in await service.select_session(session.id):
                    who = "you" if m.sender is Sender.USER else "planner"
                    print(f"{who}> {m.text}")
                    if m.itinerary is not None:
                        print(render_itinerary(m.itinerary))
            elif line == "/regen":
                last_ai = next((m for m in reversed(service.store.snapshot()) if m.sender is Sender.AI), None)
                if last_ai is None or await service.regenerate(last_ai.id) is None:
                    print("Nothing to regenerate.")
            elif line.startswith("/image "):
                pending_image = _data_uri(line.split(" ", 1)[1])
                print("Image attached to your next prompt.")
            else:
                print("planner> ", end="")
                await service.send(line, pending_image)
                pending_image = None
        except (ConversationBusyError, ImageError, IndexError, ValueError, OSError) as exc:
            print(f"! {exc}")
    await service.flush()


async def main_async(args: argparse.Namespace) -> None:
    backend = get_backend()
    try:
        if args.email:
            result = await backend.sign_in(args.email, getpass.getpass("Password: "))
        else:
            result = await backend.sign_in_as_guest()
    except AuthError as exc:
        print(f"Sign-in failed: {exc}")
        return
    manager = ConversationManager(backend, get_provider)
    service = await manager.login(result.user)
    print(f"Hello, {result.user.display_name.split(' ')[0]}. Where are we flying today?")
    try:
        await _repl(service)
    finally:
        manager.logout(result.user.id)
        await backend.sign_out(result.token)


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with the travel planner")
    parser.add_argument("--email", help="Sign in with this account instead of as a guest")
    args = parser.parse_args()
    asyncio.run(main_async(args))


if __name__ == "__main__":
    main()
