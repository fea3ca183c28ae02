# Taskboard core: board model, undo/redo action engine, and background sync
#
# Components:
#   schema.py      - Data model (Board, CardList, Card, Comment, Priority, CardStatus)
#   commands.py    - Closed set of invertible board mutations
#   model.py       - BoardModel: validates and applies commands, returns inverses
#   history.py     - Bounded undo/redo log with transaction grouping
#   engine.py      - ActionEngine: the single entry point for board mutation
#   search.py      - Incremental n-gram fuzzy index over card text
#   serializer.py  - Board document encode/decode with invariant checks
#   storage.py     - Atomic local board file
#   crypto.py      - Passphrase key derivation and AES-GCM snapshots
#   cloud.py       - Remote API transport and encrypted save/load client
#   persistence.py - Debounced save coordinator and sync status channel
#   session.py     - Session context, input events, read-only view
#   config.py      - YAML configuration

__version__ = "0.4.0"
