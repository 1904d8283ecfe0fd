"""
Parley Chat: a terminal chat client with persistent conversations and live sync.

Importing the package loads ``.env`` so configuration is available to every
entry point (CLI, Textual UI, tests).
"""

from dotenv import load_dotenv

load_dotenv()

__version__ = "0.1.0"
