"""
Tests for speech output helpers.
"""

from voicechat.services.tts import ConsoleTextToSpeech
from voicechat.services.tts_piper import speakable_text


def test_speakable_text_strips_markdown():
    text = "# Title\nSome **bold** and `code`.\n```python\nprint('hi')\n```\nDone."
    assert speakable_text(text) == "Title Some bold and code. Done."


def test_speakable_text_empty_for_code_only():
    assert speakable_text("```\nx = 1\n```") == ""


def test_console_tts_ends_the_line(capsys):
    ConsoleTextToSpeech().speak("ignored")
    assert capsys.readouterr().out == "\n"
