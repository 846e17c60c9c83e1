"""
Convenience entrypoint for the voice chat client.

Allows running `python main.py` in addition to `python -m voicechat.cli`.
"""

from voicechat.cli import main


if __name__ == "__main__":
    main()
