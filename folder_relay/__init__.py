"""Folder Relay — watch a folder and move new files to a destination.

Watches a source folder for newly created files and moves them to a
configured destination, with collision-safe renaming, bounded retries,
and a periodic sweep that picks up anything the watcher missed.
"""

__version__ = "1.0.0"
__app_name__ = "Folder Relay"
