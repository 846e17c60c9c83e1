"""
Voice chat client package.

Talk to an OpenAI-compatible chat completion endpoint by typing or speaking;
replies are streamed back and optionally read aloud. The default entrypoint
for local use is ``python -m voicechat.cli``.
"""

__all__ = [
    "capture",
    "config",
    "interfaces",
    "models",
    "pipeline",
    "store",
]
