"""Music Ingest Pipeline - Core application modules.

Provides:
- SQLite models and DB primitives
- Slug allocation, aggregate recalculation and auto-grouping
- The track processor and its scheduler (in-process or huey)
- Core utilities: atomic_io, audio_meta, paths
"""

__version__ = "0.1.0"
