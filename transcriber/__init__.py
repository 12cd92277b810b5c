"""
Audio transcription job service.

Design intent:
- Accept an upload, transcribe it through a hosted model, and render the requested formats.
- Keep job state in memory; stream progress to any number of listeners.
"""
