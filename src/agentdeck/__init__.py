"""agentdeck - run several coding-assistant CLIs side by side.

Each session owns a pseudo-terminal and an in-process terminal emulator;
a Textual dashboard polls the session registry once per frame.
"""

__version__ = "0.1.0"
