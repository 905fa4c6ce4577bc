"""
    ____              ________          __
   / __ \__  ______  / ____/ /_  ____ _/ /_
  / / / / / / / __ \/ /   / __ \/ __ `/ __/
 / /_/ / /_/ / /_/ / /___/ / / / /_/ / /_
/_____/\__,_/\____/\____/_/ /_/\__,_/\__/

DuoChat Project - real-time one-to-one messaging server.

Private chats, text and file messages, delivery/read receipts,
typing indicators and presence over websockets, plus an HTTP API.
"""

__version__ = "1.0.0"
