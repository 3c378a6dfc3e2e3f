"""Memory store — typed records on disk plus a derived full-text index.

Layout:
    ~/.memento/memory/
    ├── entities/<id>.md          # People, organizations, objects
    ├── concepts/<id>.md          # Ideas, processes, knowledge
    ├── sessions/<id>.md          # Conversations and meetings
    ├── metadata.json             # lastUpdated, memoryCount, indexVersion
    ├── index.db                  # SQLite FTS5 snapshot (rebuildable)
    ├── README.md                 # Written once when the store is built
    └── .lock                     # Advisory lock held during mutations

Record files are the source of truth; `MemoryService` is the only writer and
keeps `index.db` in agreement with them.
"""
