"""
HTTP boundary for the transcription service.

Design intent:
- Expose thin, typed endpoints for job creation, status, event streams and transcription.
- Keep request validation explicit and failure modes predictable.
"""
