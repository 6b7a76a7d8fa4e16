# Taskboard: personal task tracking, kanban status, AI-assisted capture, sketches.
#
# Components:
#   errors.py        - Error taxonomy shared by the service and the HTTP layer
#   config.py        - YAML + environment configuration
#   schema.py        - Data model (Task, TaskStatus, TaskPriority) and status machine
#   genai.py         - Text-generation client (Gemini REST, model probe list)
#   deriver.py       - Natural-language task derivation with deterministic fallback
#   priority.py      - Keyword + AI priority inference
#   assistant.py     - Task suggestions and productivity summaries
#   canvas.py        - Vector drawing model, hit-testing, undo/redo history
#   store.py         - SQLite persistence layer
#   calendar_sync.py - Google Calendar integration
#   voice.py         - Speech-to-text and recording history
#   service.py       - Owner-scoped task and drawing operations
#   cache.py         - Client-side optimistic task cache
#   client.py        - HTTP client for the board API

__version__ = "0.3.0"
