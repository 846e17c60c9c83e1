"""CLI harness for the voice chat client."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional

from .capture import CANCEL_THRESHOLD, CaptureMode, CaptureState, VoiceCaptureSession
from .config import AppConfig
from .interfaces import TextToSpeech
from .pipeline import VoiceChatAssistant
from .services.chat_client import StreamingChatClient
from .services.recognizer import RecognizerFactory
from .services.recognizer_remote import RemoteWhisperRecognizer
from .services.recognizer_whisper import WhisperRecognizer
from .services.tts import ConsoleTextToSpeech
from .services.tts_piper import PiperTextToSpeech
from .store import JsonFileStore, SessionStore, load_config, save_config

logger = logging.getLogger(__name__)

HELP = """Commands:
  <text>        send a message
  /talk         voice capture (ENTER stops it)
  /dictate      voice capture into the draft instead of sending
  /send         send the current draft
  /handsfree    toggle hands-free mode
  /health       check the chat endpoint
  /kill         emergency-stop the server's agent sessions
  /new          start a new session
  /sessions     list sessions (/open <n> to switch)
  /quit         exit"""


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_tts(config: AppConfig) -> TextToSpeech:
    if config.tts_mode == "piper":
        if not config.piper_model_path:
            raise RuntimeError("VOICECHAT_PIPER_MODEL must be set when VOICECHAT_TTS_MODE=piper.")
        return PiperTextToSpeech(
            model_path=config.piper_model_path,
            binary_path=config.piper_binary,
            speaker=config.piper_speaker,
        )
    return ConsoleTextToSpeech()


def recognizer_factories(config: AppConfig) -> List[RecognizerFactory]:
    """On-device Whisper first, then the hosted Whisper service."""
    return [
        lambda: WhisperRecognizer(model_size=config.whisper_model, device=config.whisper_device),
        lambda: RemoteWhisperRecognizer(base_url=config.whisper_url, timeout=config.request_timeout),
    ]


class ChatShell:
    """Line-oriented front end that wires the assistant to a capture session."""

    def __init__(self, config: AppConfig, store: JsonFileStore) -> None:
        self._config = config
        self._store = store
        self._sessions = SessionStore(store)
        self._client = StreamingChatClient(
            config.base_url,
            api_key=config.api_key,
            model=config.model,
            timeout=config.request_timeout,
        )
        self._assistant = VoiceChatAssistant(
            chat_client=self._client,
            sessions=self._sessions,
            tts=build_tts(config),
            system_prompt=config.system_prompt,
            on_token=lambda token: print(token, end="", flush=True),
        )
        self._capture = VoiceCaptureSession(
            recognizer_factories(config),
            mode=CaptureMode.HANDS_FREE if config.hands_free else CaptureMode.MANUAL,
            language=config.language,
            on_send=self._on_voice_send,
            on_draft=self._on_voice_draft,
            on_transcript=self._on_voice_transcript,
        )

    async def run(self) -> None:
        mode = "hands-free" if self._config.hands_free else "hold-to-talk"
        print(f"Connected to {self._client.base_url} ({self._config.model}, {mode}). /help for commands.")
        try:
            while True:
                line = await _read_line("> ")
                if line is None:
                    return
                line = line.strip()
                if not line:
                    continue
                if line.startswith("/"):
                    if not await self._command(line):
                        return
                    continue
                print("assistant: ", end="", flush=True)
                await self._assistant.send(line)
                self._print_error_reply()
        finally:
            await self._capture.close()
            await self._assistant.drain()

    async def _command(self, line: str) -> bool:
        command, _, arg = line.partition(" ")
        if command in ("/quit", "/exit"):
            return False
        if command == "/help":
            print(HELP)
        elif command in ("/talk", "/dictate"):
            await self._talk(to_draft=command == "/dictate")
        elif command == "/send":
            draft, self._assistant.draft = self._assistant.draft, ""
            if draft:
                print("assistant: ", end="", flush=True)
                await self._assistant.send(draft)
                self._print_error_reply()
        elif command == "/handsfree":
            self._toggle_hands_free()
        elif command == "/health":
            print("[health] ok" if self._client.health() else "[health] unreachable")
        elif command == "/kill":
            result = self._client.kill_switch()
            if result.success:
                print(f"[kill] {result.message} (processes killed: {result.processes_killed or 0})")
            else:
                print(f"[kill] failed: {result.error}")
        elif command == "/new":
            self._assistant.new_session()
            print("[session] new conversation")
        elif command == "/sessions":
            for index, session in enumerate(self._sessions.session_list(), start=1):
                marker = "*" if session.id == self._sessions.current_session_id else " "
                print(f"{marker} {index}. {session.title} ({len(session.messages)} messages)")
        elif command == "/open":
            self._open(arg)
        else:
            print(f"Unknown command {command}. /help for commands.")
        return True

    async def _talk(self, *, to_draft: bool) -> None:
        capture = self._capture
        if capture.mode is CaptureMode.HANDS_FREE:
            await capture.tap()
        else:
            await capture.press(y=0.0)
            if to_draft:
                capture.move(CANCEL_THRESHOLD)
        if capture.state is CaptureState.IDLE:
            print("[voice] speech recognition is not available")
            return

        await _read_line("[voice] listening, press ENTER to stop\n")
        if capture.mode is CaptureMode.HANDS_FREE:
            await capture.tap()
        else:
            await capture.release()
        while capture.state is not CaptureState.IDLE:
            await asyncio.sleep(0.05)
        print()
        await self._assistant.drain()

    def _on_voice_transcript(self, text: str) -> None:
        if text:
            print(f"\r[voice] {text}", end="", flush=True)

    def _on_voice_send(self, text: str) -> None:
        print(f"\nyou (voice): {text}\nassistant: ", end="", flush=True)
        self._assistant.submit(text)

    def _on_voice_draft(self, text: str) -> None:
        draft = self._assistant.append_draft(text)
        print(f"\n[draft] {draft}  (/send to send it)")

    def _toggle_hands_free(self) -> None:
        self._config.hands_free = not self._config.hands_free
        self._capture.mode = CaptureMode.HANDS_FREE if self._config.hands_free else CaptureMode.MANUAL
        try:
            save_config(self._store, self._config)
        except OSError as exc:
            logger.warning("Could not persist hands-free preference: %s", exc)
        print(f"[voice] hands-free {'on' if self._config.hands_free else 'off'}")

    def _open(self, arg: str) -> None:
        sessions = self._sessions.session_list()
        try:
            session = sessions[int(arg) - 1]
        except (ValueError, IndexError):
            print("Usage: /open <number from /sessions>")
            return
        self._assistant.open_session(session.id)
        for message in self._assistant.conversation.messages:
            print(f"{message.role}: {message.content}")

    def _print_error_reply(self) -> None:
        messages = self._assistant.conversation.messages
        if messages and messages[-1].role == "assistant" and messages[-1].content.startswith("Error: "):
            print(messages[-1].content)


async def _read_line(prompt: str) -> Optional[str]:
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, input, prompt)
    except EOFError:
        return None


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with an OpenAI-compatible endpoint by text or voice.")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--hands-free",
        action="store_true",
        default=None,
        help="Start voice capture in hands-free mode.",
    )
    parser.add_argument(
        "--model",
        help="Override the model name.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    defaults = AppConfig.from_env()
    store = JsonFileStore(defaults.state_path)
    config = load_config(store, defaults)
    if args.hands_free:
        config.hands_free = True
    if args.model:
        config.model = args.model
    try:
        asyncio.run(ChatShell(config, store).run())
    except KeyboardInterrupt:
        print()


if __name__ == "__main__":
    main()
