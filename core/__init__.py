"""
Core data structures and edit logic for strumtab.

Modules:
- constants: Instrument constants and the fret-to-pitch table
- timing: Tick arithmetic and symbolic durations
- models: Immutable data structures (Note, NoteStack, Tab, etc.)
- operations: Grid queries and pure mutations (insert, remove, ties)
- commands: Command pattern for undo/redo over an edit session
- persistence: Project file I/O (.stab format)
- settings: JSON user settings
- errors: Error taxonomy
"""
